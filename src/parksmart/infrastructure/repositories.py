# File: src/parksmart/infrastructure/repositories.py
"""
Repository Pattern Implementation for the ParkSmart booking core

Repositories provide a collection-like interface for the Facility and Booking
aggregates while abstracting the underlying storage.

Concurrency guards live at the record level:
- slot reserve is a compare-and-set on the slot's status
- booking end/cancel only succeeds while the stored booking is still active
- facility settings updates are checked against the stored version
- at most one active booking per (customer, facility) is enforced by the store

Storage Implementations:
- InMemory repositories - For testing and development
- SQLAlchemy repositories - For relational databases
- CachingRepository - Redis-backed read cache for facility projections
"""

from abc import ABC, abstractmethod
from typing import (
    Type, TypeVar, Generic, Optional, List, Dict, Any, Callable
)
from datetime import datetime
from functools import partial
import copy
import json
import logging
import threading

from sqlalchemy import (
    create_engine, Column, Integer, String, Boolean, DateTime,
    ForeignKey, Numeric, JSON, Index, text
)
from sqlalchemy.orm import declarative_base, sessionmaker, Session, relationship
from sqlalchemy.exc import SQLAlchemyError, IntegrityError

from ..domain.models import (
    Slot, FacilityGeometry, PriceBreakdown,
    VehicleCategory, SlotStatus, BookingStatus, PaymentStatus, to_utc_naive
)
from ..domain.aggregates import AggregateRoot, Facility, Booking
from ..domain.exceptions import ConcurrencyConflict, DuplicateActiveBooking


ACTIVE_BOOKING_INDEX = "uq_booking_active_customer_facility"


T = TypeVar('T')
ID = TypeVar('ID')


# ============================================================================
# REPOSITORY INTERFACES
# ============================================================================

class Repository(ABC, Generic[T, ID]):
    """Generic repository interface"""

    @abstractmethod
    def add(self, entity: T) -> T:
        """Add a new entity"""
        pass

    @abstractmethod
    def get(self, id: ID) -> Optional[T]:
        """Get an entity by ID"""
        pass

    @abstractmethod
    def get_all(self, skip: int = 0, limit: int = 100) -> List[T]:
        """Get all entities with pagination"""
        pass

    @abstractmethod
    def update(self, entity: T) -> T:
        """Update an existing entity"""
        pass

    @abstractmethod
    def delete(self, id: ID) -> bool:
        """Delete an entity by ID"""
        pass

    @abstractmethod
    def exists(self, id: ID) -> bool:
        """Check if an entity exists"""
        pass

    @abstractmethod
    def count(self) -> int:
        """Count all entities"""
        pass


class FacilityRepository(Repository[Facility, str], ABC):
    """Repository for Facility aggregates and their slots"""

    @abstractmethod
    def find_by_owner(self, owner_id: str) -> List[Facility]:
        pass

    @abstractmethod
    def compare_and_set_slot_status(
        self,
        facility_id: str,
        slot_id: str,
        expected: SlotStatus,
        new: SlotStatus
    ) -> bool:
        """
        Atomically move a slot from `expected` to `new`
        Returns: False when the stored status was not `expected`
        """
        pass

    @abstractmethod
    def set_slot_status(self, facility_id: str, slot_id: str, status: SlotStatus) -> bool:
        """Unconditionally set a slot's status; False if the slot does not exist"""
        pass


class BookingRepository(Repository[Booking, str], ABC):
    """Repository for Booking aggregates"""

    @abstractmethod
    def find_active(self, customer_id: str, facility_id: str) -> Optional[Booking]:
        pass

    @abstractmethod
    def find_by_customer(self, customer_id: str, status: Optional[BookingStatus] = None) -> List[Booking]:
        pass

    @abstractmethod
    def find_by_facility(self, facility_id: str, status: Optional[BookingStatus] = None) -> List[Booking]:
        pass

    @abstractmethod
    def close(self, booking: Booking) -> bool:
        """
        Persist a completed/cancelled booking
        Returns: False when the stored booking was no longer active
        """
        pass


# ============================================================================
# UNIT OF WORK PATTERN
# ============================================================================

class UnitOfWork(ABC):
    """Unit of Work pattern for transaction management"""

    @abstractmethod
    def __enter__(self):
        pass

    @abstractmethod
    def __exit__(self, exc_type, exc_val, exc_tb):
        pass

    @abstractmethod
    def commit(self):
        """Commit the transaction"""
        pass

    @abstractmethod
    def rollback(self):
        """Rollback the transaction"""
        pass

    @property
    @abstractmethod
    def facilities(self) -> FacilityRepository:
        pass

    @property
    @abstractmethod
    def bookings(self) -> BookingRepository:
        pass


# ============================================================================
# SQLALCHEMY ORM MODELS
# ============================================================================

Base = declarative_base()


class FacilityModel(Base):
    """SQLAlchemy model for Facility"""
    __tablename__ = 'facilities'

    id = Column(String(36), primary_key=True)
    name = Column(String(100), nullable=False)
    address = Column(String(255), default='')
    owner_id = Column(String(64), nullable=False, index=True)
    owner_name = Column(String(100), default='')

    # Geometry
    floors = Column(Integer, nullable=False)
    rows = Column(Integer, nullable=False)
    columns = Column(Integer, nullable=False)
    vehicle_categories = Column(JSON, nullable=False, default=list)

    # Pricing
    base_rate = Column(Numeric(10, 2), nullable=False)
    dynamic_pricing = Column(Boolean, default=True)

    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    slots = relationship(
        'FacilitySlotModel',
        back_populates='facility',
        cascade='all, delete-orphan',
        order_by='FacilitySlotModel.position'
    )


class FacilitySlotModel(Base):
    """SQLAlchemy model for a facility slot"""
    __tablename__ = 'facility_slots'

    facility_id = Column(String(36), ForeignKey('facilities.id', ondelete='CASCADE'), primary_key=True)
    slot_id = Column(String(16), primary_key=True)
    position = Column(Integer, nullable=False)
    floor_index = Column(Integer, nullable=False)
    row_index = Column(Integer, nullable=False)
    column_index = Column(Integer, nullable=False)
    category = Column(String(10), nullable=False)
    status = Column(String(16), nullable=False, default=SlotStatus.AVAILABLE.value, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    facility = relationship('FacilityModel', back_populates='slots')


class BookingModel(Base):
    """SQLAlchemy model for Booking"""
    __tablename__ = 'bookings'

    id = Column(String(20), primary_key=True)
    customer_id = Column(String(64), nullable=False, index=True)
    customer_name = Column(String(100), default='')
    customer_phone = Column(String(32), default='')
    vehicle_number = Column(String(32), default='')

    # References are by id only; bookings outlive their facility
    facility_id = Column(String(36), nullable=False, index=True)
    facility_name = Column(String(100), default='')
    facility_address = Column(String(255), default='')
    owner_id = Column(String(64), index=True)
    slot_id = Column(String(16), nullable=False)
    category = Column(String(10), nullable=False)

    start_time = Column(DateTime, nullable=False)
    scheduled_date = Column(String(20))
    scheduled_time = Column(String(20))
    end_time = Column(DateTime)

    status = Column(String(16), nullable=False, default=BookingStatus.ACTIVE.value)
    payment_status = Column(String(16), nullable=False, default=PaymentStatus.PENDING.value)

    hourly_rate = Column(Numeric(10, 2), nullable=False)
    price_breakdown = Column(JSON, nullable=False)
    duration_minutes = Column(Integer, default=0)
    total_amount = Column(Numeric(10, 2), default=0)

    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index(
            ACTIVE_BOOKING_INDEX,
            'customer_id', 'facility_id',
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'")
        ),
    )


# ============================================================================
# DOMAIN <-> ORM MAPPER
# ============================================================================

class Mapper:
    """Maps between domain aggregates and ORM models"""

    @staticmethod
    def facility_to_orm(facility: Facility) -> FacilityModel:
        model = FacilityModel(
            id=facility.id,
            name=facility.name,
            address=facility.address,
            owner_id=facility.owner_id,
            owner_name=facility.owner_name,
            floors=facility.geometry.floors,
            rows=facility.geometry.rows,
            columns=facility.geometry.columns,
            vehicle_categories=[c.value for c in facility.vehicle_categories],
            base_rate=facility.base_rate,
            dynamic_pricing=facility.dynamic_pricing,
            version=facility.version,
            created_at=to_utc_naive(facility.created_at)
        )
        model.slots = [
            FacilitySlotModel(
                slot_id=slot.id,
                position=position,
                floor_index=slot.floor,
                row_index=slot.row,
                column_index=slot.column,
                category=slot.category.value,
                status=slot.status.value
            )
            for position, slot in enumerate(facility.slots)
        ]
        return model

    @staticmethod
    def facility_to_domain(model: FacilityModel) -> Facility:
        slots = [
            Slot(
                floor=s.floor_index,
                row=s.row_index,
                column=s.column_index,
                category=VehicleCategory(s.category),
                status=SlotStatus(s.status)
            )
            for s in model.slots
        ]
        return Facility(
            id=model.id,
            name=model.name,
            address=model.address or '',
            owner_id=model.owner_id,
            owner_name=model.owner_name or '',
            geometry=FacilityGeometry(model.floors, model.rows, model.columns),
            vehicle_categories=[VehicleCategory(c) for c in model.vehicle_categories],
            base_rate=model.base_rate,
            dynamic_pricing=bool(model.dynamic_pricing),
            created_at=model.created_at,
            version=model.version,
            slots=slots
        )

    @staticmethod
    def booking_to_orm(booking: Booking) -> BookingModel:
        model = BookingModel(id=booking.id)
        Mapper.copy_booking_state(booking, model)
        return model

    @staticmethod
    def copy_booking_state(booking: Booking, model: BookingModel) -> None:
        model.customer_id = booking.customer_id
        model.customer_name = booking.customer_name
        model.customer_phone = booking.customer_phone
        model.vehicle_number = booking.vehicle_number
        model.facility_id = booking.facility_id
        model.facility_name = booking.facility_name
        model.facility_address = booking.facility_address
        model.owner_id = booking.owner_id
        model.slot_id = booking.slot_id
        model.category = booking.category.value
        model.start_time = to_utc_naive(booking.start_time)
        model.scheduled_date = booking.scheduled_date
        model.scheduled_time = booking.scheduled_time
        model.end_time = to_utc_naive(booking.end_time)
        model.status = booking.status.value
        model.payment_status = booking.payment_status.value
        model.hourly_rate = booking.hourly_rate
        model.price_breakdown = booking.price_breakdown.to_dict()
        model.duration_minutes = booking.duration_minutes
        model.total_amount = booking.total_amount
        model.version = booking.version
        model.created_at = to_utc_naive(booking.created_at)

    @staticmethod
    def booking_to_domain(model: BookingModel) -> Booking:
        return Booking(
            id=model.id,
            customer_id=model.customer_id,
            customer_name=model.customer_name or '',
            customer_phone=model.customer_phone or '',
            vehicle_number=model.vehicle_number or '',
            facility_id=model.facility_id,
            facility_name=model.facility_name or '',
            facility_address=model.facility_address or '',
            owner_id=model.owner_id or '',
            slot_id=model.slot_id,
            category=VehicleCategory(model.category),
            start_time=model.start_time,
            scheduled_date=model.scheduled_date,
            scheduled_time=model.scheduled_time,
            end_time=model.end_time,
            status=BookingStatus(model.status),
            payment_status=PaymentStatus(model.payment_status),
            hourly_rate=model.hourly_rate,
            price_breakdown=PriceBreakdown.from_dict(model.price_breakdown),
            duration_minutes=model.duration_minutes or 0,
            total_amount=model.total_amount or 0,
            created_at=model.created_at,
            version=model.version
        )


# ============================================================================
# IN-MEMORY IMPLEMENTATIONS
# ============================================================================

class InMemoryRepository(Repository[T, str]):
    """
    In-memory repository for testing

    Entities are copied on the way in and out so that callers only change
    stored state through repository methods.
    """

    def __init__(self, storage: Optional[Dict[str, T]] = None):
        self._storage: Dict[str, T] = storage if storage is not None else {}
        self._logger = logging.getLogger(self.__class__.__name__)

    @staticmethod
    def _copy(entity: T) -> T:
        duplicate = copy.deepcopy(entity)
        if isinstance(duplicate, AggregateRoot):
            duplicate.clear_events()
        return duplicate

    def add(self, entity: T) -> T:
        entity_id = getattr(entity, 'id')
        if entity_id in self._storage:
            raise KeyError(f"Entity {entity_id} already exists")

        if isinstance(entity, AggregateRoot):
            entity.mark_persisted()
        self._storage[entity_id] = self._copy(entity)
        self._logger.debug(f"Added entity {entity_id}")
        return entity

    def get(self, id: str) -> Optional[T]:
        stored = self._storage.get(id)
        return self._copy(stored) if stored is not None else None

    def get_all(self, skip: int = 0, limit: int = 100) -> List[T]:
        items = list(self._storage.values())
        return [self._copy(item) for item in items[skip:skip + limit]]

    def update(self, entity: T) -> T:
        entity_id = getattr(entity, 'id')
        stored = self._storage.get(entity_id)
        if stored is None:
            raise KeyError(f"Entity {entity_id} not found")

        if isinstance(entity, AggregateRoot):
            if stored.version != entity.persisted_version:
                raise ConcurrencyConflict(
                    f"{type(entity).__name__} {entity_id} was changed by another request"
                )
            entity.mark_persisted()

        self._storage[entity_id] = self._copy(entity)
        self._logger.debug(f"Updated entity {entity_id}")
        return entity

    def delete(self, id: str) -> bool:
        if id in self._storage:
            del self._storage[id]
            self._logger.debug(f"Deleted entity {id}")
            return True
        return False

    def exists(self, id: str) -> bool:
        return id in self._storage

    def count(self) -> int:
        return len(self._storage)

    def clear(self):
        """Clear all data (for testing)"""
        self._storage.clear()


class InMemoryFacilityRepository(InMemoryRepository[Facility], FacilityRepository):
    """In-memory repository for facilities"""

    def find_by_owner(self, owner_id: str) -> List[Facility]:
        return [self._copy(f) for f in self._storage.values() if f.owner_id == owner_id]

    def compare_and_set_slot_status(
        self,
        facility_id: str,
        slot_id: str,
        expected: SlotStatus,
        new: SlotStatus
    ) -> bool:
        facility = self._storage.get(facility_id)
        slot = facility.get_slot(slot_id) if facility else None
        if slot is None or slot.status != expected:
            return False

        slot.status = new
        return True

    def set_slot_status(self, facility_id: str, slot_id: str, status: SlotStatus) -> bool:
        facility = self._storage.get(facility_id)
        slot = facility.get_slot(slot_id) if facility else None
        if slot is None:
            return False

        slot.status = status
        return True


class InMemoryBookingRepository(InMemoryRepository[Booking], BookingRepository):
    """In-memory repository for bookings"""

    def add(self, entity: Booking) -> Booking:
        if entity.is_active and self._find_active(entity.customer_id, entity.facility_id):
            raise DuplicateActiveBooking(
                f"Customer {entity.customer_id} already has an active booking at this facility"
            )
        return super().add(entity)

    def _find_active(self, customer_id: str, facility_id: str) -> Optional[Booking]:
        for booking in self._storage.values():
            if (booking.customer_id == customer_id
                    and booking.facility_id == facility_id
                    and booking.is_active):
                return booking
        return None

    def find_active(self, customer_id: str, facility_id: str) -> Optional[Booking]:
        booking = self._find_active(customer_id, facility_id)
        return self._copy(booking) if booking else None

    def find_by_customer(self, customer_id: str, status: Optional[BookingStatus] = None) -> List[Booking]:
        return [
            self._copy(b) for b in self._storage.values()
            if b.customer_id == customer_id and (status is None or b.status == status)
        ]

    def find_by_facility(self, facility_id: str, status: Optional[BookingStatus] = None) -> List[Booking]:
        return [
            self._copy(b) for b in self._storage.values()
            if b.facility_id == facility_id and (status is None or b.status == status)
        ]

    def close(self, booking: Booking) -> bool:
        stored = self._storage.get(booking.id)
        if stored is None or not stored.is_active:
            return False

        booking.mark_persisted()
        self._storage[booking.id] = self._copy(booking)
        return True


class InMemoryStore:
    """Shared state behind in-memory units of work"""

    def __init__(self):
        self.facilities: Dict[str, Facility] = {}
        self.bookings: Dict[str, Booking] = {}
        self.lock = threading.RLock()

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {
            "facilities": copy.deepcopy(self.facilities),
            "bookings": copy.deepcopy(self.bookings),
        }

    def restore(self, snapshot: Dict[str, Dict[str, Any]]) -> None:
        # Restore in place; repositories hold references to these dicts
        self.facilities.clear()
        self.facilities.update(snapshot["facilities"])
        self.bookings.clear()
        self.bookings.update(snapshot["bookings"])


class InMemoryUnitOfWork(UnitOfWork):
    """
    Unit of Work over an InMemoryStore

    Holds the store lock for its whole duration and restores the snapshot
    taken on entry when it rolls back.
    """

    def __init__(self, store: InMemoryStore):
        self.store = store
        self._snapshot: Optional[Dict[str, Dict[str, Any]]] = None
        self._logger = logging.getLogger(self.__class__.__name__)

    def __enter__(self):
        self.store.lock.acquire()
        self._snapshot = self.store.snapshot()
        self._facilities = InMemoryFacilityRepository(self.store.facilities)
        self._bookings = InMemoryBookingRepository(self.store.bookings)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is not None:
                self._logger.debug(f"Rolling back unit of work: {exc_val}")
                self.rollback()
            else:
                try:
                    self.commit()
                except Exception:
                    self.rollback()
                    raise
        finally:
            self._snapshot = None
            self.store.lock.release()

    def commit(self):
        """Make the current state the new rollback point"""
        self._snapshot = self.store.snapshot()
        self._logger.debug("Transaction committed")

    def rollback(self):
        """Rollback the transaction"""
        if self._snapshot is not None:
            self.store.restore(self._snapshot)
        self._logger.debug("Transaction rolled back")

    @property
    def facilities(self) -> InMemoryFacilityRepository:
        return self._facilities

    @property
    def bookings(self) -> InMemoryBookingRepository:
        return self._bookings


# ============================================================================
# SQLALCHEMY REPOSITORIES
# ============================================================================

class SQLAlchemyRepository(Repository[T, str], ABC):
    """Base SQLAlchemy repository"""

    def __init__(self, session: Session):
        self.session = session
        self._logger = logging.getLogger(self.__class__.__name__)

    @property
    @abstractmethod
    def model_class(self) -> Type[Base]:
        """Return SQLAlchemy model class"""
        pass

    @abstractmethod
    def to_domain(self, model: Base) -> T:
        """Convert ORM model to domain model"""
        pass

    @abstractmethod
    def to_orm(self, entity: T) -> Base:
        """Convert domain model to ORM model"""
        pass

    def add(self, entity: T) -> T:
        try:
            model = self.to_orm(entity)
            self.session.add(model)
            self.session.flush()
            if isinstance(entity, AggregateRoot):
                entity.mark_persisted()

            self._logger.debug(f"Added entity: {model.id}")
            return entity
        except IntegrityError as e:
            self.session.rollback()
            self._logger.error(f"Integrity error adding entity: {e}")
            raise
        except SQLAlchemyError as e:
            self.session.rollback()
            self._logger.error(f"Database error adding entity: {e}")
            raise

    def get(self, id: str) -> Optional[T]:
        try:
            model = self.session.get(self.model_class, id)
            if model:
                return self.to_domain(model)
            return None
        except SQLAlchemyError as e:
            self._logger.error(f"Database error getting entity {id}: {e}")
            raise

    def get_all(self, skip: int = 0, limit: int = 100) -> List[T]:
        try:
            query = self.session.query(self.model_class).order_by(self.model_class.created_at)
            models = query.offset(skip).limit(limit).all()
            return [self.to_domain(model) for model in models]
        except SQLAlchemyError as e:
            self._logger.error(f"Database error getting all entities: {e}")
            raise

    def delete(self, id: str) -> bool:
        try:
            model = self.session.get(self.model_class, id)
            if model:
                self.session.delete(model)
                self.session.flush()
                self._logger.debug(f"Deleted entity: {id}")
                return True
            return False
        except SQLAlchemyError as e:
            self.session.rollback()
            self._logger.error(f"Database error deleting entity {id}: {e}")
            raise

    def exists(self, id: str) -> bool:
        try:
            count = self.session.query(self.model_class).filter(
                self.model_class.id == id
            ).count()
            return count > 0
        except SQLAlchemyError as e:
            self._logger.error(f"Database error checking existence of {id}: {e}")
            raise

    def count(self) -> int:
        try:
            return self.session.query(self.model_class).count()
        except SQLAlchemyError as e:
            self._logger.error(f"Database error counting entities: {e}")
            raise


class SQLAlchemyFacilityRepository(SQLAlchemyRepository[Facility], FacilityRepository):
    """Repository for facilities"""

    @property
    def model_class(self) -> Type[Base]:
        return FacilityModel

    def to_domain(self, model: FacilityModel) -> Facility:
        return Mapper.facility_to_domain(model)

    def to_orm(self, entity: Facility) -> FacilityModel:
        return Mapper.facility_to_orm(entity)

    def update(self, entity: Facility) -> Facility:
        """Persist facility settings, guarded by the stored version"""
        try:
            result = self.session.query(FacilityModel).filter(
                FacilityModel.id == entity.id,
                FacilityModel.version == entity.persisted_version
            ).update({
                'name': entity.name,
                'address': entity.address,
                'owner_name': entity.owner_name,
                'base_rate': entity.base_rate,
                'dynamic_pricing': entity.dynamic_pricing,
                'version': entity.version,
                'updated_at': datetime.utcnow()
            })
            self.session.flush()
        except SQLAlchemyError as e:
            self.session.rollback()
            self._logger.error(f"Database error updating facility {entity.id}: {e}")
            raise

        if result == 0:
            raise ConcurrencyConflict(f"Facility {entity.id} was changed by another request")

        entity.mark_persisted()
        self._logger.debug(f"Updated facility: {entity.id} (version {entity.version})")
        return entity

    def find_by_owner(self, owner_id: str) -> List[Facility]:
        try:
            models = self.session.query(FacilityModel).filter(
                FacilityModel.owner_id == owner_id
            ).order_by(FacilityModel.created_at).all()
            return [self.to_domain(m) for m in models]
        except SQLAlchemyError as e:
            self._logger.error(f"Database error finding facilities for owner {owner_id}: {e}")
            raise

    def compare_and_set_slot_status(
        self,
        facility_id: str,
        slot_id: str,
        expected: SlotStatus,
        new: SlotStatus
    ) -> bool:
        try:
            result = self.session.query(FacilitySlotModel).filter(
                FacilitySlotModel.facility_id == facility_id,
                FacilitySlotModel.slot_id == slot_id,
                FacilitySlotModel.status == expected.value
            ).update({
                'status': new.value,
                'updated_at': datetime.utcnow()
            })

            self.session.flush()
            return result > 0
        except SQLAlchemyError as e:
            self.session.rollback()
            self._logger.error(f"Database error changing slot {slot_id} status: {e}")
            raise

    def set_slot_status(self, facility_id: str, slot_id: str, status: SlotStatus) -> bool:
        try:
            result = self.session.query(FacilitySlotModel).filter(
                FacilitySlotModel.facility_id == facility_id,
                FacilitySlotModel.slot_id == slot_id
            ).update({
                'status': status.value,
                'updated_at': datetime.utcnow()
            })

            self.session.flush()
            return result > 0
        except SQLAlchemyError as e:
            self.session.rollback()
            self._logger.error(f"Database error setting slot {slot_id} status: {e}")
            raise


class SQLAlchemyBookingRepository(SQLAlchemyRepository[Booking], BookingRepository):
    """Repository for bookings"""

    @property
    def model_class(self) -> Type[Base]:
        return BookingModel

    def to_domain(self, model: BookingModel) -> Booking:
        return Mapper.booking_to_domain(model)

    def to_orm(self, entity: Booking) -> BookingModel:
        return Mapper.booking_to_orm(entity)

    def add(self, entity: Booking) -> Booking:
        try:
            return super().add(entity)
        except IntegrityError as e:
            if not self._violates_active_booking_index(e):
                raise
            raise DuplicateActiveBooking(
                f"Customer {entity.customer_id} already has an active booking at this facility"
            )

    @staticmethod
    def _violates_active_booking_index(error: IntegrityError) -> bool:
        # PostgreSQL names the index; SQLite lists the indexed columns
        detail = str(error.orig)
        return ACTIVE_BOOKING_INDEX in detail or "bookings.customer_id, bookings.facility_id" in detail

    def update(self, entity: Booking) -> Booking:
        try:
            result = self.session.query(BookingModel).filter(
                BookingModel.id == entity.id,
                BookingModel.version == entity.persisted_version
            ).update(self._state(entity))
            self.session.flush()
        except SQLAlchemyError as e:
            self.session.rollback()
            self._logger.error(f"Database error updating booking {entity.id}: {e}")
            raise

        if result == 0:
            raise ConcurrencyConflict(f"Booking {entity.id} was changed by another request")
        entity.mark_persisted()
        return entity

    def close(self, booking: Booking) -> bool:
        try:
            result = self.session.query(BookingModel).filter(
                BookingModel.id == booking.id,
                BookingModel.status == BookingStatus.ACTIVE.value
            ).update(self._state(booking))
            self.session.flush()
        except SQLAlchemyError as e:
            self.session.rollback()
            self._logger.error(f"Database error closing booking {booking.id}: {e}")
            raise

        if result > 0:
            booking.mark_persisted()
        return result > 0

    @staticmethod
    def _state(booking: Booking) -> Dict[str, Any]:
        return {
            'end_time': to_utc_naive(booking.end_time),
            'status': booking.status.value,
            'payment_status': booking.payment_status.value,
            'duration_minutes': booking.duration_minutes,
            'total_amount': booking.total_amount,
            'version': booking.version,
            'updated_at': datetime.utcnow()
        }

    def _find(self, status: Optional[BookingStatus] = None, **criteria) -> List[Booking]:
        try:
            query = self.session.query(BookingModel)
            for key, value in criteria.items():
                query = query.filter(getattr(BookingModel, key) == value)
            if status is not None:
                query = query.filter(BookingModel.status == status.value)
            models = query.order_by(BookingModel.start_time).all()
            return [self.to_domain(m) for m in models]
        except SQLAlchemyError as e:
            self._logger.error(f"Database error finding bookings by {criteria}: {e}")
            raise

    def find_active(self, customer_id: str, facility_id: str) -> Optional[Booking]:
        found = self._find(BookingStatus.ACTIVE, customer_id=customer_id, facility_id=facility_id)
        return found[0] if found else None

    def find_by_customer(self, customer_id: str, status: Optional[BookingStatus] = None) -> List[Booking]:
        return self._find(status, customer_id=customer_id)

    def find_by_facility(self, facility_id: str, status: Optional[BookingStatus] = None) -> List[Booking]:
        return self._find(status, facility_id=facility_id)


class SQLAlchemyUnitOfWork(UnitOfWork):
    """Unit of Work implementation with SQLAlchemy"""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory
        self._logger = logging.getLogger(self.__class__.__name__)

    def __enter__(self):
        self.session = self.session_factory()
        self._facilities = SQLAlchemyFacilityRepository(self.session)
        self._bookings = SQLAlchemyBookingRepository(self.session)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is not None:
                self._logger.debug(f"Rolling back unit of work: {exc_val}")
                self.rollback()
            else:
                self.commit()
        finally:
            self.session.close()

    def commit(self):
        """Commit the transaction"""
        try:
            self.session.commit()
            self._logger.debug("Transaction committed")
        except SQLAlchemyError as e:
            self._logger.error(f"Error committing transaction: {e}")
            self.session.rollback()
            raise

    def rollback(self):
        """Rollback the transaction"""
        self.session.rollback()
        self._logger.debug("Transaction rolled back")

    @property
    def facilities(self) -> SQLAlchemyFacilityRepository:
        return self._facilities

    @property
    def bookings(self) -> SQLAlchemyBookingRepository:
        return self._bookings


# ============================================================================
# REPOSITORY FACTORY
# ============================================================================

class RepositoryFactory:
    """Factory for creating units of work"""

    @staticmethod
    def create_sqlalchemy_uow_factory(database_url: str, **engine_options) -> Callable[[], SQLAlchemyUnitOfWork]:
        """
        Create the engine, make sure the schema exists and return a
        callable producing a fresh unit of work per call
        """
        engine = create_engine(database_url, echo=False, **engine_options)
        SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

        # Create tables if they don't exist
        Base.metadata.create_all(bind=engine)

        return partial(SQLAlchemyUnitOfWork, SessionLocal)

    @staticmethod
    def create_in_memory_uow_factory(store: Optional[InMemoryStore] = None) -> Callable[[], InMemoryUnitOfWork]:
        """Create an in-memory unit of work factory for testing"""
        return partial(InMemoryUnitOfWork, store or InMemoryStore())


# ============================================================================
# CACHING REPOSITORY (Decorator Pattern)
# ============================================================================

class CachingRepository(Repository[T, str]):
    """
    Repository decorator that adds a read cache

    The cache client is redis-like (get / set(..., ex=ttl) / delete).
    Entities are cached as JSON built from their to_dict().
    """

    def __init__(
        self,
        repository: Repository[T, str],
        cache_client: Any,
        entity_class: Type[T],
        ttl: int = 300
    ):
        self.repository = repository
        self.cache = cache_client
        self.entity_class = entity_class
        self.ttl = ttl
        self._logger = logging.getLogger(self.__class__.__name__)

    @staticmethod
    def cache_key(entity_class: type, id: str) -> str:
        return f"{entity_class.__name__}:{id}"

    def _cache_key(self, id: str) -> str:
        return self.cache_key(self.entity_class, id)

    def invalidate(self, id: str) -> None:
        self.cache.delete(self._cache_key(id))

    def add(self, entity: T) -> T:
        result = self.repository.add(entity)
        self.invalidate(getattr(entity, 'id'))
        return result

    def get(self, id: str) -> Optional[T]:
        cache_key = self._cache_key(id)

        cached = self.cache.get(cache_key)
        if cached:
            self._logger.debug(f"Cache hit for {id}")
            if isinstance(cached, bytes):
                cached = cached.decode('utf-8')
            return self.entity_class.from_dict(json.loads(cached))

        entity = self.repository.get(id)
        if entity:
            self.cache.set(cache_key, json.dumps(entity.to_dict()), ex=self.ttl)
            self._logger.debug(f"Cached entity {id}")

        return entity

    def get_all(self, skip: int = 0, limit: int = 100) -> List[T]:
        # Listings change too often to cache
        return self.repository.get_all(skip, limit)

    def update(self, entity: T) -> T:
        result = self.repository.update(entity)
        self.invalidate(getattr(entity, 'id'))
        return result

    def delete(self, id: str) -> bool:
        result = self.repository.delete(id)
        if result:
            self.invalidate(id)
        return result

    def exists(self, id: str) -> bool:
        return self.repository.exists(id)

    def count(self) -> int:
        return self.repository.count()
