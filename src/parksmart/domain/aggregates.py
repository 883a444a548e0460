# File: src/parksmart/domain/aggregates.py
"""
Aggregate Roots for the ParkSmart booking core
Following Domain-Driven Design (DDD) Aggregate Pattern

Aggregates:
1. Facility - owns its slot grid exclusively
2. Booking - per-booking state machine (active -> completed | cancelled)

Key Concepts:
- Aggregate Roots enforce business invariants
- Slots are only reached through their facility
- Domain events are raised for important state changes
- A booking references its facility, slot and customer by id only
"""

from typing import List, Optional, Dict, Any, Iterable
from datetime import datetime
from decimal import Decimal
from collections import Counter
import logging
import uuid

from .models import (
    Entity, Slot, FacilityGeometry, PriceBreakdown,
    VehicleCategory, SlotStatus, BookingStatus, PaymentStatus,
    DomainEvent, FacilityRegisteredEvent, FacilityRemovedEvent,
    PricingModeChangedEvent, BookingCreatedEvent, BookingCompletedEvent,
    BookingCancelledEvent, billable_minutes, settle_amount, round_money,
    to_decimal
)
from .exceptions import InvalidFacilityConfiguration, InvalidStateTransition


# ============================================================================
# BASE AGGREGATE ROOT
# ============================================================================

class AggregateRoot(Entity):
    """
    Base class for all aggregate roots
    Provides domain event collection and versioning
    """

    def __init__(self, id: Optional[str] = None, version: int = 1):
        super().__init__(id)
        self._version: int = version
        self._persisted_version: int = version
        self._changes: List[DomainEvent] = []
        self._logger = logging.getLogger(self.__class__.__name__)

    @property
    def version(self) -> int:
        """Get current aggregate version"""
        return self._version

    @property
    def persisted_version(self) -> int:
        """Version the store held when this aggregate was loaded or last saved"""
        return self._persisted_version

    def mark_persisted(self) -> None:
        self._persisted_version = self._version

    def _increment_version(self) -> None:
        """Increment version after state change"""
        self._version += 1

    def _add_domain_event(self, event: DomainEvent) -> None:
        """Add a domain event to the list of changes"""
        self._changes.append(event)
        self._logger.debug(f"Added domain event: {event.__class__.__name__}")

    @property
    def pending_events(self) -> List[DomainEvent]:
        return list(self._changes)

    def clear_events(self) -> List[DomainEvent]:
        """Clear and return all domain events"""
        events = self._changes.copy()
        self._changes.clear()
        return events

    @property
    def has_changes(self) -> bool:
        """Check if aggregate has pending domain events"""
        return len(self._changes) > 0

    def _validate_invariants(self) -> None:
        """Validate aggregate invariants - to be overridden by subclasses"""
        pass


# ============================================================================
# FACILITY AGGREGATE
# ============================================================================

class Facility(AggregateRoot):
    """
    Aggregate Root: Parking facility with an ordered slot grid

    Invariants:
    - slot count equals floors x rows x columns
    - slot ids are unique and every slot lies inside the grid
    - every slot accepts one of the facility's vehicle categories
    """

    def __init__(
        self,
        name: str,
        address: str,
        geometry: FacilityGeometry,
        vehicle_categories: Iterable[VehicleCategory],
        base_rate: Decimal,
        slots: Iterable[Slot],
        owner_id: str,
        owner_name: str = "",
        dynamic_pricing: bool = True,
        created_at: Optional[datetime] = None,
        id: Optional[str] = None,
        version: int = 1
    ):
        super().__init__(id, version)
        self.name = name
        self.address = address
        self.geometry = geometry
        self.vehicle_categories: List[VehicleCategory] = list(vehicle_categories)
        self.base_rate = round_money(to_decimal(base_rate))
        self.owner_id = owner_id
        self.owner_name = owner_name
        self.dynamic_pricing = dynamic_pricing
        self.created_at = created_at or datetime.now()
        self.last_updated = self.created_at

        # Insertion order is the generation order (floor, row, column)
        self._slots: Dict[str, Slot] = {}
        for slot in slots:
            self._slots[slot.id] = slot

        self._validate_invariants()

    @classmethod
    def register(cls, **kwargs) -> 'Facility':
        """Create a new facility and record the registration event"""
        facility = cls(**kwargs)
        facility._add_domain_event(FacilityRegisteredEvent(
            facility_id=facility.id,
            owner_id=facility.owner_id,
            name=facility.name,
            capacity=facility.capacity
        ))
        facility._logger.info(f"Registered facility: {facility.name} (ID: {facility.id})")
        return facility

    def _validate_invariants(self) -> None:
        """Validate facility invariants"""
        if not self.name or not self.name.strip():
            raise InvalidFacilityConfiguration("Facility name is required")

        if not self.vehicle_categories:
            raise InvalidFacilityConfiguration("At least one vehicle category is required")

        if len(set(self.vehicle_categories)) != len(self.vehicle_categories):
            raise InvalidFacilityConfiguration("Vehicle categories must not repeat")

        if self.base_rate <= Decimal('0'):
            raise InvalidFacilityConfiguration("Base hourly rate must be positive")

        if len(self._slots) != self.geometry.capacity:
            raise InvalidFacilityConfiguration(
                f"Slot count mismatch: {len(self._slots)} slots for "
                f"capacity {self.geometry.capacity} ({self.geometry})"
            )

        for slot in self._slots.values():
            if not (0 <= slot.floor < self.geometry.floors
                    and 0 <= slot.row < self.geometry.rows
                    and 0 <= slot.column < self.geometry.columns):
                raise InvalidFacilityConfiguration(f"Slot {slot.id} lies outside the facility grid")
            if slot.category not in self.vehicle_categories:
                raise InvalidFacilityConfiguration(
                    f"Slot {slot.id} accepts {slot.category.value}, which the facility does not support"
                )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def capacity(self) -> int:
        return self.geometry.capacity

    @property
    def slots(self) -> List[Slot]:
        """Slots in generation order"""
        return list(self._slots.values())

    def get_slot(self, slot_id: str) -> Optional[Slot]:
        if not slot_id:
            return None
        return self._slots.get(slot_id.strip().upper())

    def has_slot(self, slot_id: str) -> bool:
        return self.get_slot(slot_id) is not None

    def count_by_status(self) -> Dict[SlotStatus, int]:
        counts = Counter(slot.status for slot in self._slots.values())
        return {status: counts.get(status, 0) for status in SlotStatus}

    @property
    def available_count(self) -> int:
        return self.count_by_status()[SlotStatus.AVAILABLE]

    @property
    def booked_count(self) -> int:
        """Slots that are reserved or occupied"""
        return self.capacity - self.available_count

    def occupancy_rate(self) -> Decimal:
        """Share of slots that are not available, as an exact Decimal ratio"""
        if not self._slots:
            return Decimal('0')
        return Decimal(self.booked_count) / Decimal(len(self._slots))

    def floor_occupancy(self) -> Dict[int, float]:
        """Per floor: share of slots that are reserved or occupied"""
        totals: Dict[int, int] = {}
        booked: Dict[int, int] = {}
        for slot in self._slots.values():
            totals[slot.floor] = totals.get(slot.floor, 0) + 1
            if not slot.is_available:
                booked[slot.floor] = booked.get(slot.floor, 0) + 1
        return {
            floor: (booked.get(floor, 0) / total if total else 0.0)
            for floor, total in totals.items()
        }

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def slot_changed(self, slot: Slot) -> None:
        """
        Record that one of the facility's slots changed status
        Slot rows carry their own compare-and-set guard, so the facility
        version is left alone.
        """
        self.last_updated = datetime.now()
        self._logger.debug(f"Slot {slot.id} in {self.id} is now {slot.status.value}")

    def set_dynamic_pricing(self, enabled: bool) -> bool:
        """
        Switch dynamic pricing on or off
        Returns: True if the setting changed
        """
        if self.dynamic_pricing == enabled:
            return False

        self.dynamic_pricing = enabled
        self.last_updated = datetime.now()
        self._increment_version()
        self._add_domain_event(PricingModeChangedEvent(self.id, enabled))
        self._logger.info(f"Dynamic pricing {'enabled' if enabled else 'disabled'} for {self.name}")
        return True

    def mark_removed(self) -> None:
        self._add_domain_event(FacilityRemovedEvent(self.id, self.owner_id))
        self._logger.info(f"Facility {self.name} (ID: {self.id}) removed")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "owner_id": self.owner_id,
            "owner_name": self.owner_name,
            "geometry": self.geometry.to_dict(),
            "vehicle_categories": [c.value for c in self.vehicle_categories],
            "base_rate": str(self.base_rate),
            "dynamic_pricing": self.dynamic_pricing,
            "created_at": self.created_at.isoformat(),
            "version": self.version,
            "slots": [slot.to_dict() for slot in self._slots.values()],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Facility':
        return cls(
            id=data["id"],
            name=data["name"],
            address=data.get("address", ""),
            owner_id=data.get("owner_id", ""),
            owner_name=data.get("owner_name", ""),
            geometry=FacilityGeometry(**data["geometry"]),
            vehicle_categories=[VehicleCategory(c) for c in data["vehicle_categories"]],
            base_rate=to_decimal(data["base_rate"]),
            dynamic_pricing=bool(data.get("dynamic_pricing", True)),
            created_at=datetime.fromisoformat(data["created_at"]) if data.get("created_at") else None,
            version=int(data.get("version", 1)),
            slots=[Slot.from_dict(s) for s in data["slots"]],
        )

    def __str__(self) -> str:
        return (f"{self.name}: {self.available_count}/{self.capacity} available "
                f"({'dynamic' if self.dynamic_pricing else 'flat'} pricing)")


# ============================================================================
# BOOKING AGGREGATE
# ============================================================================

class Booking(AggregateRoot):
    """
    Aggregate Root: A customer's hold on one slot

    State machine: ACTIVE -> COMPLETED or ACTIVE -> CANCELLED.
    Both end states are terminal; a terminal booking is never mutated again.
    The hourly rate and its breakdown are snapshotted at creation.
    """

    def __init__(
        self,
        customer_id: str,
        facility_id: str,
        slot_id: str,
        category: VehicleCategory,
        hourly_rate: Decimal,
        price_breakdown: PriceBreakdown,
        start_time: datetime,
        customer_name: str = "",
        customer_phone: str = "",
        vehicle_number: str = "",
        facility_name: str = "",
        facility_address: str = "",
        owner_id: str = "",
        scheduled_date: Optional[str] = None,
        scheduled_time: Optional[str] = None,
        status: BookingStatus = BookingStatus.ACTIVE,
        payment_status: PaymentStatus = PaymentStatus.PENDING,
        end_time: Optional[datetime] = None,
        duration_minutes: int = 0,
        total_amount: Decimal = Decimal('0.00'),
        created_at: Optional[datetime] = None,
        id: Optional[str] = None,
        version: int = 1
    ):
        super().__init__(id or self.next_id(), version)
        self.customer_id = customer_id
        self.facility_id = facility_id
        self.slot_id = slot_id
        self.category = category
        self.hourly_rate = round_money(to_decimal(hourly_rate))
        self.price_breakdown = price_breakdown
        self.start_time = start_time
        self.customer_name = customer_name
        self.customer_phone = customer_phone
        self.vehicle_number = vehicle_number
        self.facility_name = facility_name
        self.facility_address = facility_address
        self.owner_id = owner_id
        self.scheduled_date = scheduled_date
        self.scheduled_time = scheduled_time
        self.status = status
        self.payment_status = payment_status
        self.end_time = end_time
        self.duration_minutes = duration_minutes
        self.total_amount = round_money(to_decimal(total_amount))
        self.created_at = created_at or start_time

    @staticmethod
    def next_id(prefix: str = "BK-") -> str:
        return f"{prefix}{uuid.uuid4().hex[:8].upper()}"

    @classmethod
    def open(
        cls,
        facility: 'Facility',
        slot: Slot,
        customer_id: str,
        price_breakdown: PriceBreakdown,
        now: datetime,
        id_prefix: str = "BK-",
        **details
    ) -> 'Booking':
        """Open an active booking on a slot that has already been reserved"""
        booking = cls(
            id=cls.next_id(id_prefix),
            customer_id=customer_id,
            facility_id=facility.id,
            facility_name=facility.name,
            facility_address=facility.address,
            owner_id=facility.owner_id,
            slot_id=slot.id,
            category=slot.category,
            hourly_rate=price_breakdown.final,
            price_breakdown=price_breakdown,
            start_time=now,
            created_at=now,
            **details
        )
        booking._add_domain_event(BookingCreatedEvent(
            booking_id=booking.id,
            facility_id=booking.facility_id,
            slot_id=booking.slot_id,
            customer_id=booking.customer_id,
            hourly_rate=booking.hourly_rate,
            timestamp=now
        ))
        booking._logger.info(
            f"Opened booking {booking.id}: slot {booking.slot_id} at {booking.facility_name} "
            f"for {booking.customer_id} @ {booking.hourly_rate}/hr"
        )
        return booking

    @property
    def is_active(self) -> bool:
        return self.status == BookingStatus.ACTIVE

    def _ensure_active(self, action: str) -> None:
        if not self.is_active:
            raise InvalidStateTransition(
                f"Cannot {action} booking {self.id}: it is already {self.status.value}"
            )

    def complete(self, now: datetime) -> None:
        """
        End the booking and settle it against the snapshotted rate
        Raises: InvalidStateTransition if the booking is not active
        """
        self._ensure_active("end")

        self.end_time = now
        self.duration_minutes = billable_minutes(self.start_time, now)
        self.total_amount = settle_amount(self.hourly_rate, self.duration_minutes)
        self.status = BookingStatus.COMPLETED
        self.payment_status = PaymentStatus.PAID
        self._increment_version()

        self._add_domain_event(BookingCompletedEvent(
            booking_id=self.id,
            facility_id=self.facility_id,
            slot_id=self.slot_id,
            duration_minutes=self.duration_minutes,
            total_amount=self.total_amount,
            timestamp=now
        ))
        self._logger.info(
            f"Completed booking {self.id}: {self.duration_minutes} min, total {self.total_amount}"
        )

    def cancel(self, now: datetime) -> None:
        """
        Cancel the booking; nothing is charged
        Raises: InvalidStateTransition if the booking is not active
        """
        self._ensure_active("cancel")

        self.end_time = now
        self.status = BookingStatus.CANCELLED
        self.payment_status = PaymentStatus.CANCELLED
        self._increment_version()

        self._add_domain_event(BookingCancelledEvent(
            booking_id=self.id,
            facility_id=self.facility_id,
            slot_id=self.slot_id,
            timestamp=now
        ))
        self._logger.info(f"Cancelled booking {self.id}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "vehicle_number": self.vehicle_number,
            "facility_id": self.facility_id,
            "facility_name": self.facility_name,
            "facility_address": self.facility_address,
            "owner_id": self.owner_id,
            "slot_id": self.slot_id,
            "category": self.category.value,
            "start_time": self.start_time.isoformat(),
            "scheduled_date": self.scheduled_date,
            "scheduled_time": self.scheduled_time,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "status": self.status.value,
            "payment_status": self.payment_status.value,
            "hourly_rate": str(self.hourly_rate),
            "price_breakdown": self.price_breakdown.to_dict(),
            "duration_minutes": self.duration_minutes,
            "total_amount": str(self.total_amount),
            "created_at": self.created_at.isoformat(),
            "version": self.version,
        }

    def __str__(self) -> str:
        return f"Booking {self.id} [{self.status.value}] slot {self.slot_id} @ {self.hourly_rate}/hr"
