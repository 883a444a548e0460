# File: src/parksmart/application/booking_service.py
"""
Booking Service - Application layer for the ParkSmart booking core

This module implements the main application service that coordinates the
domain services, repositories and messaging to fulfil the use cases of the
system. It follows the Application Service pattern from DDD.

Key Responsibilities:
1. Facility registration and pricing settings
2. Slot suggestion and price quotes
3. Booking creation, completion and cancellation
4. Read projections (receipts, mispark checks, owner statistics)

Every use case returns a result DTO; domain errors become failure results
carrying a stable error code and a human-readable reason.
"""

from typing import Dict, List, Optional, Any, Callable
from datetime import datetime
from decimal import Decimal
from contextlib import contextmanager
import logging
import threading

import redis

from ..config import Settings
from ..domain.models import VehicleCategory, SlotStatus, BookingStatus, round_money
from ..domain.aggregates import Facility, Booking
from ..domain.inventory import SlotInventory
from ..domain.strategies import (
    AllocationEngine, PricingEngine, WeightedScoreStrategy,
    AllocationWeights, PricingPolicy
)
from ..domain.exceptions import (
    BookingError, FacilityNotFound, SlotUnavailable, DuplicateActiveBooking,
    BookingNotFound, InvalidStateTransition, InvalidFacilityConfiguration
)
from ..infrastructure.repositories import (
    UnitOfWork, RepositoryFactory, CachingRepository, InMemoryStore
)
from ..infrastructure.messaging import (
    EventBus, MessageQueue, RedisMessageQueue, QueueForwardingHandler
)
from ..infrastructure.factories import FacilityFactory
from .dtos import (
    DTOFactory, ResultDTO, FacilityCreateDTO, BookingRequestDTO,
    FacilityResultDTO, FacilityListDTO, BookingResultDTO, BookingListDTO,
    SlotSuggestionDTO, QuoteDTO, ReceiptResultDTO, MisparkCheckDTO, OwnerStatsDTO
)


INTERNAL_ERROR = "INTERNAL_ERROR"


# ============================================================================
# BOOKING SERVICE
# ============================================================================

class BookingService:
    """
    Main application service for facility bookings

    This service orchestrates the use cases of the system:
    1. Facility registration and management
    2. Slot allocation and pricing
    3. Booking lifecycle (create, end, cancel)
    4. Owner and customer read models

    Each use case runs inside one unit of work. Booking creation, ending and
    cancellation are additionally serialized per facility through a fixed set
of striped locks.
    """

    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        allocation: Optional[AllocationEngine] = None,
        pricing: Optional[PricingEngine] = None,
        inventory: Optional[SlotInventory] = None,
        event_bus: Optional[EventBus] = None,
        message_queue: Optional[MessageQueue] = None,
        cache_client: Any = None,
        clock: Callable[[], datetime] = datetime.now,
        event_channel: str = "parksmart.events",
        cache_ttl: int = 300,
        lock_stripes: int = 64
    ):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.uow_factory = uow_factory
        self.inventory = inventory or SlotInventory()
        self.facility_factory = FacilityFactory(self.inventory)
        self.event_bus = event_bus or EventBus()
        self.message_queue = message_queue
        self.cache_client = cache_client
        self.cache_ttl = cache_ttl
        self.clock = clock

        if message_queue is not None:
            self.event_bus.subscribe_all(QueueForwardingHandler(message_queue, event_channel))

        # Service configuration
        self.config: Dict[str, Any] = {
            "allocation_weights": {"distance": 0.5, "occupancy": 0.3, "accessibility": 0.2},
            "peak_hours": (18, 22),
            "booking_id_prefix": "BK-",
        }
        self.allocation = allocation or self._build_allocation()
        self.pricing = pricing or self._build_pricing()

        # Facilities share a fixed pool of locks, picked by id hash
        self._facility_locks: List[threading.Lock] = [threading.Lock() for _ in range(max(1, lock_stripes))]

        self.logger.info("BookingService initialized")

    def _build_allocation(self) -> AllocationEngine:
        weights = AllocationWeights(**self.config["allocation_weights"])
        return AllocationEngine(WeightedScoreStrategy(weights))

    def _build_pricing(self) -> PricingEngine:
        start, end = self.config["peak_hours"]
        return PricingEngine(PricingPolicy(peak_start_hour=int(start), peak_end_hour=int(end)))

    def configure(self, config: Dict[str, Any]) -> None:
        """Apply configuration overrides and rebuild the engines they affect"""
        self.config.update(config)
        if "allocation_weights" in config:
            self.allocation = self._build_allocation()
        if "peak_hours" in config:
            self.pricing = self._build_pricing()
        self.logger.info(f"Service configuration updated: {sorted(config)}")

    # ------------------------------------------------------------------
    # Facility use cases
    # ------------------------------------------------------------------

    def create_facility(self, request: FacilityCreateDTO) -> FacilityResultDTO:
        """
        Register a new facility

        Use Case: Facility Registration
        1. Generate the slot grid
        2. Validate facility invariants
        3. Persist the facility
        4. Publish the registration event
        """
        self.logger.info(f"Registering facility '{request.name}' for owner {request.owner_id}")

        try:
            try:
                facility = self.facility_factory.create_from_dto(request)
            except ValueError as e:
                raise InvalidFacilityConfiguration(str(e))

            with self.uow_factory() as uow:
                uow.facilities.add(facility)
                events = facility.clear_events()

            self._after_commit(facility.id, events)
            return FacilityResultDTO(
                success=True,
                facility=self._project(facility),
                message=f"Facility {facility.name} registered with {facility.capacity} slots"
            )

        except BookingError as e:
            return self._failure(FacilityResultDTO, e)
        except Exception as e:
            self.logger.error(f"Error registering facility: {e}", exc_info=True)
            return self._internal_error(FacilityResultDTO, e)

    def get_facility(self, facility_id: str, include_slots: bool = True) -> FacilityResultDTO:
        """Read projection of one facility with its current quote"""
        try:
            with self.uow_factory() as uow:
                repository = uow.facilities
                if self.cache_client is not None:
                    repository = CachingRepository(repository, self.cache_client, Facility, self.cache_ttl)
                facility = repository.get(facility_id)

            if facility is None:
                raise FacilityNotFound(f"Facility {facility_id} not found")

            return FacilityResultDTO(
                success=True,
                facility=self._project(facility, include_slots)
            )

        except BookingError as e:
            return self._failure(FacilityResultDTO, e)
        except Exception as e:
            self.logger.error(f"Error loading facility {facility_id}: {e}", exc_info=True)
            return self._internal_error(FacilityResultDTO, e)

    def list_facilities(self, owner_id: Optional[str] = None, skip: int = 0, limit: int = 100) -> FacilityListDTO:
        """List facilities, optionally only those of one owner"""
        try:
            with self.uow_factory() as uow:
                if owner_id is not None:
                    facilities = uow.facilities.find_by_owner(owner_id)
                else:
                    facilities = uow.facilities.get_all(skip, limit)

            return FacilityListDTO(
                success=True,
                facilities=[self._project(f) for f in facilities]
            )

        except Exception as e:
            self.logger.error(f"Error listing facilities: {e}", exc_info=True)
            return self._internal_error(FacilityListDTO, e)

    def set_dynamic_pricing(self, facility_id: str, enabled: bool) -> FacilityResultDTO:
        """Switch dynamic pricing on or off for a facility"""
        return self._change_pricing_mode(facility_id, lambda current: enabled)

    def toggle_dynamic_pricing(self, facility_id: str) -> FacilityResultDTO:
        """Flip the facility's dynamic pricing setting"""
        return self._change_pricing_mode(facility_id, lambda current: not current)

    def _change_pricing_mode(self, facility_id: str, decide: Callable[[bool], bool]) -> FacilityResultDTO:
        try:
            with self._facility_lock(facility_id):
                with self.uow_factory() as uow:
                    facility = self._load_facility(uow, facility_id)
                    if facility.set_dynamic_pricing(decide(facility.dynamic_pricing)):
                        uow.facilities.update(facility)
                    events = facility.clear_events()

            self._after_commit(facility_id, events)
            mode = "enabled" if facility.dynamic_pricing else "disabled"
            return FacilityResultDTO(
                success=True,
                facility=self._project(facility),
                message=f"Dynamic pricing {mode} for {facility.name}"
            )

        except BookingError as e:
            return self._failure(FacilityResultDTO, e)
        except Exception as e:
            self.logger.error(f"Error changing pricing mode of {facility_id}: {e}", exc_info=True)
            return self._internal_error(FacilityResultDTO, e)

    def remove_facility(self, facility_id: str) -> ResultDTO:
        """
        Remove a facility and its slots

        Historical bookings are kept; their facility reference becomes dangling.
        """
        self.logger.info(f"Removing facility {facility_id}")

        try:
            with self._facility_lock(facility_id):
                with self.uow_factory() as uow:
                    facility = self._load_facility(uow, facility_id)
                    facility.mark_removed()
                    uow.facilities.delete(facility_id)
                    events = facility.clear_events()

            self._after_commit(facility_id, events)
            return ResultDTO(success=True, message=f"Facility {facility.name} removed")

        except BookingError as e:
            return self._failure(ResultDTO, e)
        except Exception as e:
            self.logger.error(f"Error removing facility {facility_id}: {e}", exc_info=True)
            return self._internal_error(ResultDTO, e)

    # ------------------------------------------------------------------
    # Allocation and pricing
    # ------------------------------------------------------------------

    def find_optimal_slot(self, facility_id: str, vehicle_category: Any) -> SlotSuggestionDTO:
        """
        Suggest the best available slot for a vehicle category
        The suggestion is not reserved.
        """
        try:
            category = VehicleCategory(vehicle_category)
            with self.uow_factory() as uow:
                facility = self._load_facility(uow, facility_id)

            slot = self.allocation.find_optimal(facility, category)
            if slot is None:
                return SlotSuggestionDTO(
                    success=True,
                    message=f"No available {category.value} slot in {facility.name}"
                )

            return SlotSuggestionDTO(
                success=True,
                slot=DTOFactory.create_slot(slot),
                message=f"Suggested slot {slot.label}"
            )

        except BookingError as e:
            return self._failure(SlotSuggestionDTO, e)
        except Exception as e:
            self.logger.error(f"Error finding slot in {facility_id}: {e}", exc_info=True)
            return self._internal_error(SlotSuggestionDTO, e)

    def quote(self, facility_id: str, at: Optional[datetime] = None) -> QuoteDTO:
        """Current effective hourly rate of a facility"""
        try:
            with self.uow_factory() as uow:
                facility = self._load_facility(uow, facility_id)

            breakdown = self.pricing.quote(facility, at or self.clock())
            return QuoteDTO(
                success=True,
                facility_id=facility.id,
                occupancy_rate=float(facility.occupancy_rate()),
                breakdown=DTOFactory.create_breakdown(breakdown)
            )

        except BookingError as e:
            return self._failure(QuoteDTO, e)
        except Exception as e:
            self.logger.error(f"Error quoting {facility_id}: {e}", exc_info=True)
            return self._internal_error(QuoteDTO, e)

    # ------------------------------------------------------------------
    # Booking lifecycle
    # ------------------------------------------------------------------

    def create_booking(self, request: BookingRequestDTO) -> BookingResultDTO:
        """
        Book a slot for a customer

        Use Case: Booking Creation
        1. Reject a second active booking of the customer at the facility
        2. Use the requested slot or let the allocation engine pick one
        3. Reserve the slot (compare-and-set at the store)
        4. Snapshot the current price onto the booking
        5. Persist the booking and publish its event

        Returns: Booking result; nothing is reserved when it fails
        """
        self.logger.info(f"Processing booking request of {request.customer_id} at {request.facility_id}")

        try:
            category = VehicleCategory(request.vehicle_category)

            with self._facility_lock(request.facility_id):
                with self.uow_factory() as uow:
                    # Step 1: Load facility and check for an active booking
                    facility = self._load_facility(uow, request.facility_id)
                    if uow.bookings.find_active(request.customer_id, facility.id):
                        raise DuplicateActiveBooking(
                            f"Customer {request.customer_id} already has an active booking at {facility.name}"
                        )

                    # Step 2: Determine the target slot
                    slot_id = self._target_slot(facility, category, request.slot_id)

                    # Step 3: Reserve in the aggregate and at the store
                    slot = self.inventory.reserve(facility, slot_id)
                    if not uow.facilities.compare_and_set_slot_status(
                            facility.id, slot.id, SlotStatus.AVAILABLE, SlotStatus.RESERVED):
                        raise SlotUnavailable(f"Slot {slot.id} was taken by another booking")

                    # Step 4: Price snapshot
                    now = self.clock()
                    breakdown = self.pricing.quote(facility, now)

                    # Step 5: Persist booking
                    booking = Booking.open(
                        facility,
                        slot,
                        request.customer_id,
                        breakdown,
                        now,
                        id_prefix=self.config["booking_id_prefix"],
                        customer_name=request.customer_name,
                        customer_phone=request.customer_phone,
                        vehicle_number=request.vehicle_number,
                        scheduled_date=request.scheduled_date,
                        scheduled_time=request.scheduled_time
                    )
                    uow.bookings.add(booking)
                    events = booking.clear_events()

            self._after_commit(facility.id, events)
            return BookingResultDTO(
                success=True,
                booking=DTOFactory.create_booking(booking),
                message=f"Slot {booking.slot_id} booked at {booking.hourly_rate}/hr"
            )

        except BookingError as e:
            return self._failure(BookingResultDTO, e)
        except Exception as e:
            self.logger.error(f"Error creating booking: {e}", exc_info=True)
            return self._internal_error(BookingResultDTO, e)

    def _target_slot(self, facility: Facility, category: VehicleCategory, slot_id: Optional[str]) -> str:
        if slot_id:
            slot = facility.get_slot(slot_id)
            if slot is None:
                raise SlotUnavailable(f"Slot {slot_id} does not exist in {facility.name}")
            if not slot.accepts(category):
                raise SlotUnavailable(f"Slot {slot.id} does not accept {category.value} vehicles")
            if not slot.is_available:
                raise SlotUnavailable(f"Slot {slot.id} is {slot.status.value}")
            return slot.id

        slot = self.allocation.find_optimal(facility, category)
        if slot is None:
            raise SlotUnavailable(f"No available {category.value} slot in {facility.name}")
        return slot.id

    def end_booking(self, booking_id: str) -> BookingResultDTO:
        """
        End an active booking

        Use Case: Booking Completion
        1. Settle duration and amount against the snapshotted rate
        2. Close the booking (only if still active at the store)
        3. Release the slot
        """
        self.logger.info(f"Ending booking {booking_id}")
        return self._close_booking(booking_id, lambda booking, now: booking.complete(now), "ended")

    def cancel_booking(self, booking_id: str) -> BookingResultDTO:
        """Cancel an active booking; nothing is charged and the slot is released"""
        self.logger.info(f"Cancelling booking {booking_id}")
        return self._close_booking(booking_id, lambda booking, now: booking.cancel(now), "cancelled")

    def _close_booking(
        self,
        booking_id: str,
        transition: Callable[[Booking, datetime], None],
        verb: str
    ) -> BookingResultDTO:
        try:
            with self.uow_factory() as uow:
                facility_id = self._load_booking(uow, booking_id).facility_id

            with self._facility_lock(facility_id):
                with self.uow_factory() as uow:
                    booking = self._load_booking(uow, booking_id)
                    transition(booking, self.clock())

                    if not uow.bookings.close(booking):
                        raise InvalidStateTransition(f"Booking {booking_id} is no longer active")

                    self._release_slot(uow, booking)
                    events = booking.clear_events()

            self._after_commit(facility_id, events)
            return BookingResultDTO(
                success=True,
                booking=DTOFactory.create_booking(booking),
                message=f"Booking {booking.id} {verb}"
            )

        except BookingError as e:
            return self._failure(BookingResultDTO, e)
        except Exception as e:
            self.logger.error(f"Error closing booking {booking_id}: {e}", exc_info=True)
            return self._internal_error(BookingResultDTO, e)

    def _release_slot(self, uow: UnitOfWork, booking: Booking) -> None:
        facility = uow.facilities.get(booking.facility_id)
        if facility is None:
            self.logger.warning(
                f"Facility {booking.facility_id} of booking {booking.id} no longer exists; "
                f"slot {booking.slot_id} not released"
            )
            return

        self.inventory.release(facility, booking.slot_id)
        uow.facilities.set_slot_status(facility.id, booking.slot_id, SlotStatus.AVAILABLE)

    # ------------------------------------------------------------------
    # Booking read models
    # ------------------------------------------------------------------

    def get_booking(self, booking_id: str) -> BookingResultDTO:
        try:
            with self.uow_factory() as uow:
                booking = self._load_booking(uow, booking_id)
            return BookingResultDTO(success=True, booking=DTOFactory.create_booking(booking))

        except BookingError as e:
            return self._failure(BookingResultDTO, e)
        except Exception as e:
            self.logger.error(f"Error loading booking {booking_id}: {e}", exc_info=True)
            return self._internal_error(BookingResultDTO, e)

    def list_customer_bookings(self, customer_id: str, status: Optional[Any] = None) -> BookingListDTO:
        return self._list_bookings(lambda uow, s: uow.bookings.find_by_customer(customer_id, s), status)

    def list_facility_bookings(self, facility_id: str, status: Optional[Any] = None) -> BookingListDTO:
        return self._list_bookings(lambda uow, s: uow.bookings.find_by_facility(facility_id, s), status)

    def _list_bookings(self, query: Callable, status: Optional[Any]) -> BookingListDTO:
        try:
            booking_status = BookingStatus(status) if status is not None else None
            with self.uow_factory() as uow:
                bookings = query(uow, booking_status)

            return BookingListDTO(
                success=True,
                bookings=[DTOFactory.create_booking(b) for b in bookings]
            )

        except Exception as e:
            self.logger.error(f"Error listing bookings: {e}", exc_info=True)
            return self._internal_error(BookingListDTO, e)

    def check_mispark(self, booking_id: str, reported_slot_id: str) -> MisparkCheckDTO:
        """
        Compare where a vehicle is parked with the slot it booked
        Only active bookings can be checked.
        """
        try:
            with self.uow_factory() as uow:
                booking = self._load_booking(uow, booking_id)

            if not booking.is_active:
                raise InvalidStateTransition(
                    f"Booking {booking.id} is {booking.status.value}; only active bookings can be checked"
                )

            reported = (reported_slot_id or "").strip().upper()
            mispark = booking.slot_id.upper() != reported
            vehicle = booking.vehicle_number or "Vehicle"
            if mispark:
                message = (f"Mispark detected: {vehicle} is at slot {reported or '-'} "
                           f"but booking is for slot {booking.slot_id}")
                self.logger.warning(f"Mispark on booking {booking.id}: {reported} != {booking.slot_id}")
            else:
                message = f"No mispark: {vehicle} is correctly parked at slot {booking.slot_id}"

            return MisparkCheckDTO(
                success=True,
                booking_id=booking.id,
                booked_slot_id=booking.slot_id,
                reported_slot_id=reported,
                mispark_detected=mispark,
                message=message
            )

        except BookingError as e:
            return self._failure(MisparkCheckDTO, e)
        except Exception as e:
            self.logger.error(f"Error checking mispark for {booking_id}: {e}", exc_info=True)
            return self._internal_error(MisparkCheckDTO, e)

    def get_receipt(self, booking_id: str) -> ReceiptResultDTO:
        try:
            with self.uow_factory() as uow:
                booking = self._load_booking(uow, booking_id)
            return ReceiptResultDTO(success=True, receipt=DTOFactory.create_receipt(booking))

        except BookingError as e:
            return self._failure(ReceiptResultDTO, e)
        except Exception as e:
            self.logger.error(f"Error building receipt for {booking_id}: {e}", exc_info=True)
            return self._internal_error(ReceiptResultDTO, e)

    def get_owner_stats(self, owner_id: str) -> OwnerStatsDTO:
        """Dashboard totals over an owner's facilities and their bookings"""
        try:
            total_slots = available = booked = active = 0
            earnings = Decimal('0')

            with self.uow_factory() as uow:
                facilities = uow.facilities.find_by_owner(owner_id)
                for facility in facilities:
                    total_slots += facility.capacity
                    available += facility.available_count
                    booked += facility.booked_count
                    for booking in uow.bookings.find_by_facility(facility.id):
                        if booking.status == BookingStatus.ACTIVE:
                            active += 1
                        elif booking.status == BookingStatus.COMPLETED:
                            earnings += booking.total_amount

            return OwnerStatsDTO(
                success=True,
                owner_id=owner_id,
                facilities=len(facilities),
                total_slots=total_slots,
                available_slots=available,
                booked_slots=booked,
                active_bookings=active,
                total_earnings=round_money(earnings)
            )

        except Exception as e:
            self.logger.error(f"Error building stats for owner {owner_id}: {e}", exc_info=True)
            return self._internal_error(OwnerStatsDTO, e)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _facility_lock(self, facility_id: str):
        lock = self._facility_locks[hash(facility_id) % len(self._facility_locks)]
        with lock:
            yield

    @staticmethod
    def _load_facility(uow: UnitOfWork, facility_id: str) -> Facility:
        facility = uow.facilities.get(facility_id)
        if facility is None:
            raise FacilityNotFound(f"Facility {facility_id} not found")
        return facility

    @staticmethod
    def _load_booking(uow: UnitOfWork, booking_id: str) -> Booking:
        booking = uow.bookings.get(booking_id)
        if booking is None:
            raise BookingNotFound(f"Booking {booking_id} not found")
        return booking

    def _project(self, facility: Facility, include_slots: bool = False):
        return DTOFactory.create_facility(
            facility,
            current_price=self.pricing.quote(facility, self.clock()),
            include_slots=include_slots
        )

    def _after_commit(self, facility_id: str, events: List) -> None:
        """Invalidate cached projections and publish committed events"""
        if self.cache_client is not None:
            try:
                self.cache_client.delete(CachingRepository.cache_key(Facility, facility_id))
            except Exception as e:
                self.logger.warning(f"Could not invalidate cache for facility {facility_id}: {e}")

        self.event_bus.publish_all(events)

    def _failure(self, result_class, error: BookingError):
        self.logger.warning(f"{error.error_code}: {error.reason}")
        return result_class(success=False, error_code=error.error_code, message=error.reason)

    @staticmethod
    def _internal_error(result_class, error: Exception):
        return result_class(success=False, error_code=INTERNAL_ERROR, message=f"Internal error: {error}")


# ============================================================================
# SERVICE FACTORY
# ============================================================================

class BookingServiceFactory:
    """Factory for creating booking service instances"""

    @staticmethod
    def create_default_service(settings: Optional[Settings] = None) -> BookingService:
        """Create a booking service wired from settings (environment by default)"""
        settings = settings or Settings.from_env()

        if settings.storage_backend == "memory":
            uow_factory = RepositoryFactory.create_in_memory_uow_factory()
        else:
            uow_factory = RepositoryFactory.create_sqlalchemy_uow_factory(settings.database_url)

        cache_client = None
        message_queue = None
        if settings.redis_url:
            cache_client = redis.Redis.from_url(settings.redis_url)
            message_queue = RedisMessageQueue(settings.redis_url, client=cache_client)

        return BookingService(
            uow_factory,
            message_queue=message_queue,
            cache_client=cache_client,
            event_channel=settings.event_channel,
            cache_ttl=settings.cache_ttl_seconds
        )

    @staticmethod
    def create_service_with_config(config: Dict[str, Any], settings: Optional[Settings] = None) -> BookingService:
        """Create a booking service with custom configuration"""
        service = BookingServiceFactory.create_default_service(settings)
        service.configure(config)
        return service

    @staticmethod
    def create_in_memory_service(
        store: Optional[InMemoryStore] = None,
        clock: Callable[[], datetime] = datetime.now,
        **kwargs
    ) -> BookingService:
        """Create a booking service backed by in-memory storage (testing, demo)"""
        return BookingService(
            RepositoryFactory.create_in_memory_uow_factory(store),
            clock=clock,
            **kwargs
        )


# ============================================================================
# COMMAND HANDLER
# ============================================================================

class BookingCommandHandler:
    """
    Handler for booking commands

    Implements command pattern for presentation layers; results are plain dicts.
    """

    def __init__(self, service: BookingService):
        self.service = service
        self.logger = logging.getLogger(self.__class__.__name__)

    def handle(self, command: Dict[str, Any]) -> Dict[str, Any]:
        """Handle a booking command"""
        command_type = command.get("type")
        data = command.get("data", {})

        try:
            if command_type == "create_facility":
                result = self.service.create_facility(FacilityCreateDTO(**data))

            elif command_type == "create_booking":
                result = self.service.create_booking(BookingRequestDTO(**data))

            elif command_type == "end_booking":
                result = self.service.end_booking(data["booking_id"])

            elif command_type == "cancel_booking":
                result = self.service.cancel_booking(data["booking_id"])

            elif command_type == "find_optimal_slot":
                result = self.service.find_optimal_slot(data["facility_id"], data["vehicle_category"])

            elif command_type == "quote":
                at = data.get("at")
                result = self.service.quote(
                    data["facility_id"],
                    datetime.fromisoformat(at) if isinstance(at, str) else at
                )

            elif command_type == "check_mispark":
                result = self.service.check_mispark(data["booking_id"], data["reported_slot_id"])

            elif command_type == "get_receipt":
                result = self.service.get_receipt(data["booking_id"])

            else:
                return {
                    "success": False,
                    "error": f"Unknown command type: {command_type}"
                }

            return {"success": result.success, "data": result.to_dict(mode="json")}

        except Exception as e:
            self.logger.error(f"Error handling command {command_type}: {e}", exc_info=True)
            return {
                "success": False,
                "error": str(e)
            }
