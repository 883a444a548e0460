# File: src/parksmart/domain/models.py
"""
Domain Models for the ParkSmart booking core
Following Domain-Driven Design (DDD) principles with rich domain models

This module contains:
1. Value Objects: FacilityGeometry, PriceBreakdown
2. Entities: Slot (identity derived from its grid position)
3. Enums: vehicle categories, slot / booking / payment statuses
4. Domain Events: facility and booking occurrences
5. Billing helpers shared by the booking lifecycle

Amounts are plain Decimal values in a single unit; there is no currency type.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Dict, Any
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
import uuid

from .exceptions import SlotUnavailable


MONEY_QUANTUM = Decimal('0.01')
MAX_ROWS = 26  # rows are lettered A-Z


def round_money(amount: Decimal) -> Decimal:
    """Round an amount to cents, half-up on the cent boundary"""
    return Decimal(amount).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def to_decimal(value: Any) -> Decimal:
    """Coerce ints, floats and strings into Decimal without binary noise"""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


# ============================================================================
# ENUMS FOR DOMAIN TYPES
# ============================================================================

class VehicleCategory(Enum):
    """
    Enumeration of vehicle categories a slot can accept
    Every slot accepts exactly one category
    """
    CAR = "car"
    BIKE = "bike"
    EV = "ev"

    def __str__(self) -> str:
        names = {
            VehicleCategory.CAR: "Car",
            VehicleCategory.BIKE: "Bike",
            VehicleCategory.EV: "Electric Vehicle",
        }
        return names.get(self, self.value.title())


class SlotStatus(Enum):
    """
    Enumeration of slot statuses

    The booking lifecycle only moves slots between AVAILABLE and RESERVED.
    OCCUPIED is kept for stored data and demo seeding.
    """
    AVAILABLE = "available"
    RESERVED = "reserved"
    OCCUPIED = "occupied"


class BookingStatus(Enum):
    """Enumeration of booking statuses"""
    ACTIVE = "active"          # Slot held for the customer
    COMPLETED = "completed"    # Ended and settled
    CANCELLED = "cancelled"    # Cancelled without charge

    @property
    def is_terminal(self) -> bool:
        return self in (BookingStatus.COMPLETED, BookingStatus.CANCELLED)


class PaymentStatus(Enum):
    """Enumeration of booking payment statuses"""
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


# ============================================================================
# DOMAIN PRIMITIVES / VALUE OBJECTS
# ============================================================================

@dataclass(frozen=True)
class FacilityGeometry:
    """
    Value Object: Floor / row / column dimensions of a facility
    """
    floors: int
    rows: int
    columns: int

    def __post_init__(self):
        """Validate dimensions"""
        for name in ("floors", "rows", "columns"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                raise ValueError(f"{name.capitalize()} must be a positive integer, got: {value!r}")

        if self.rows > MAX_ROWS:
            raise ValueError(f"Rows cannot exceed {MAX_ROWS}, got: {self.rows}")

    @property
    def capacity(self) -> int:
        """Total number of slots in the grid"""
        return self.floors * self.rows * self.columns

    def __str__(self) -> str:
        return f"{self.floors} floors x {self.rows} rows x {self.columns} columns"

    def to_dict(self) -> Dict[str, Any]:
        return {"floors": self.floors, "rows": self.rows, "columns": self.columns}


STANDARD_RATE_LABEL = "Standard rate"


@dataclass(frozen=True)
class PriceBreakdown:
    """
    Value Object: How an effective hourly rate was derived

    final = base x occupancy_multiplier x peak_multiplier, rounded to cents.
    """
    base: Decimal
    final: Decimal
    occupancy_multiplier: Decimal = Decimal('1')
    occupancy_label: str = STANDARD_RATE_LABEL
    peak_multiplier: Decimal = Decimal('1')
    peak_label: str = ""

    def __post_init__(self):
        """Normalize numeric fields to Decimal and validate"""
        for name in ("base", "final", "occupancy_multiplier", "peak_multiplier"):
            object.__setattr__(self, name, to_decimal(getattr(self, name)))

        if self.base < Decimal('0') or self.final < Decimal('0'):
            raise ValueError("Rates cannot be negative")

    @classmethod
    def flat(cls, base: Decimal) -> 'PriceBreakdown':
        """Breakdown with no adjustments applied"""
        base = to_decimal(base)
        return cls(base=base, final=base)

    @property
    def has_adjustments(self) -> bool:
        return self.occupancy_multiplier != 1 or self.peak_multiplier != 1

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization (amounts as strings)"""
        return {
            "base": str(self.base),
            "occupancy_multiplier": str(self.occupancy_multiplier),
            "occupancy_label": self.occupancy_label,
            "peak_multiplier": str(self.peak_multiplier),
            "peak_label": self.peak_label,
            "final": str(self.final),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PriceBreakdown':
        return cls(
            base=to_decimal(data["base"]),
            final=to_decimal(data["final"]),
            occupancy_multiplier=to_decimal(data.get("occupancy_multiplier", 1)),
            occupancy_label=data.get("occupancy_label", STANDARD_RATE_LABEL),
            peak_multiplier=to_decimal(data.get("peak_multiplier", 1)),
            peak_label=data.get("peak_label", ""),
        )


# ============================================================================
# DOMAIN ENTITIES
# ============================================================================

class Entity:
    """
    Base class for all domain entities
    Provides common functionality for entities with identity
    """

    def __init__(self, id: Optional[str] = None):
        self._id = id or str(uuid.uuid4())

    @property
    def id(self) -> str:
        """Get entity ID"""
        return self._id

    def __eq__(self, other: object) -> bool:
        """Entities are equal if they have the same ID and type"""
        if not isinstance(other, Entity):
            return False
        return self.id == other.id and type(self) == type(other)

    def __hash__(self) -> int:
        return hash((self.id, type(self).__name__))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id})"


def row_letter(row: int) -> str:
    """Map a zero-based row index to its letter (0 -> 'A')"""
    return chr(ord('A') + row)


def make_slot_id(floor: int, row: int, column: int) -> str:
    """Derive the slot identifier from zero-based grid coordinates: F1-A1"""
    return f"F{floor + 1}-{row_letter(row)}{column + 1}"


class Slot(Entity):
    """
    Entity: A single parking space in a facility grid
    Identity is derived deterministically from floor / row / column
    """

    def __init__(
        self,
        floor: int,
        row: int,
        column: int,
        category: VehicleCategory,
        status: SlotStatus = SlotStatus.AVAILABLE
    ):
        super().__init__(make_slot_id(floor, row, column))
        self.floor = floor
        self.row = row
        self.column = column
        self.category = category
        self.status = status

    @property
    def slot_id(self) -> str:
        return self.id

    @property
    def label(self) -> str:
        """Display label, identical to the slot id"""
        return self.id

    @property
    def is_available(self) -> bool:
        return self.status == SlotStatus.AVAILABLE

    def accepts(self, category: VehicleCategory) -> bool:
        return self.category == category

    def reserve(self) -> None:
        """
        Hold the slot for a booking
        Raises: SlotUnavailable if the slot is not available
        """
        if not self.is_available:
            raise SlotUnavailable(
                f"Slot {self.id} is {self.status.value} and cannot be reserved"
            )
        self.status = SlotStatus.RESERVED

    def release(self) -> None:
        """Return the slot to the available pool (idempotent)"""
        self.status = SlotStatus.AVAILABLE

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            "id": self.id,
            "label": self.label,
            "floor": self.floor,
            "row": self.row,
            "column": self.column,
            "category": self.category.value,
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Slot':
        return cls(
            floor=int(data["floor"]),
            row=int(data["row"]),
            column=int(data["column"]),
            category=VehicleCategory(data["category"]),
            status=SlotStatus(data.get("status", SlotStatus.AVAILABLE.value)),
        )

    def __str__(self) -> str:
        return f"Slot {self.label} ({self.category}) - {self.status.value}"


# ============================================================================
# BILLING HELPERS
# ============================================================================

_ONE_MINUTE = timedelta(minutes=1)


def to_utc_naive(moment: Optional[datetime]) -> Optional[datetime]:
    """Aware datetimes become naive UTC; naive ones are taken to be UTC already"""
    if moment is None or moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def billable_minutes(start_time: datetime, end_time: datetime) -> int:
    """
    Whole minutes to bill for a stay: elapsed minutes rounded up, at least 1
    90 seconds -> 2 minutes

    A naive bound (as read back from a database) is taken to be UTC, so it
    can be paired with an aware one.
    """
    if (start_time.tzinfo is None) != (end_time.tzinfo is None):
        start_time, end_time = to_utc_naive(start_time), to_utc_naive(end_time)
    elapsed = end_time - start_time
    # ceil division on timedelta keeps microsecond precision
    minutes = -((-elapsed) // _ONE_MINUTE)
    return max(1, minutes)


def settle_amount(hourly_rate: Decimal, minutes: int) -> Decimal:
    """Amount due for a stay at the given hourly rate"""
    return round_money(to_decimal(hourly_rate) * Decimal(minutes) / Decimal(60))


# ============================================================================
# DOMAIN EVENTS (for event-driven architecture)
# ============================================================================

class DomainEvent(ABC):
    """
    Base class for all domain events
    Events represent something that happened in the domain
    """

    event_type: str = "domain.event"

    def __init__(self, timestamp: Optional[datetime] = None):
        self.event_id = str(uuid.uuid4())
        self.timestamp = timestamp or datetime.now()
        self.version = "1.0"

    @abstractmethod
    def payload(self) -> Dict[str, Any]:
        """Event specific data"""
        pass

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for serialization"""
        return {
            "event_type": self.event_type,
            "event_id": self.event_id,
            "timestamp": self.timestamp.isoformat(),
            "version": self.version,
            "data": self.payload(),
        }

    def __str__(self) -> str:
        return f"{self.__class__.__name__} at {self.timestamp}"


class FacilityRegisteredEvent(DomainEvent):
    """Event raised when an owner registers a facility"""

    event_type = "facility.registered"

    def __init__(self, facility_id: str, owner_id: str, name: str, capacity: int):
        super().__init__()
        self.facility_id = facility_id
        self.owner_id = owner_id
        self.name = name
        self.capacity = capacity

    def payload(self) -> Dict[str, Any]:
        return {
            "facility_id": self.facility_id,
            "owner_id": self.owner_id,
            "name": self.name,
            "capacity": self.capacity,
        }


class FacilityRemovedEvent(DomainEvent):
    """Event raised when a facility is removed"""

    event_type = "facility.removed"

    def __init__(self, facility_id: str, owner_id: str):
        super().__init__()
        self.facility_id = facility_id
        self.owner_id = owner_id

    def payload(self) -> Dict[str, Any]:
        return {"facility_id": self.facility_id, "owner_id": self.owner_id}


class PricingModeChangedEvent(DomainEvent):
    """Event raised when dynamic pricing is switched on or off"""

    event_type = "facility.pricing_changed"

    def __init__(self, facility_id: str, dynamic_pricing: bool):
        super().__init__()
        self.facility_id = facility_id
        self.dynamic_pricing = dynamic_pricing

    def payload(self) -> Dict[str, Any]:
        return {"facility_id": self.facility_id, "dynamic_pricing": self.dynamic_pricing}


class BookingCreatedEvent(DomainEvent):
    """Event raised when a booking reserves a slot"""

    event_type = "booking.created"

    def __init__(
        self,
        booking_id: str,
        facility_id: str,
        slot_id: str,
        customer_id: str,
        hourly_rate: Decimal,
        timestamp: Optional[datetime] = None
    ):
        super().__init__(timestamp)
        self.booking_id = booking_id
        self.facility_id = facility_id
        self.slot_id = slot_id
        self.customer_id = customer_id
        self.hourly_rate = hourly_rate

    def payload(self) -> Dict[str, Any]:
        return {
            "booking_id": self.booking_id,
            "facility_id": self.facility_id,
            "slot_id": self.slot_id,
            "customer_id": self.customer_id,
            "hourly_rate": str(self.hourly_rate),
        }


class BookingCompletedEvent(DomainEvent):
    """Event raised when a booking is ended and settled"""

    event_type = "booking.completed"

    def __init__(
        self,
        booking_id: str,
        facility_id: str,
        slot_id: str,
        duration_minutes: int,
        total_amount: Decimal,
        timestamp: Optional[datetime] = None
    ):
        super().__init__(timestamp)
        self.booking_id = booking_id
        self.facility_id = facility_id
        self.slot_id = slot_id
        self.duration_minutes = duration_minutes
        self.total_amount = total_amount

    def payload(self) -> Dict[str, Any]:
        return {
            "booking_id": self.booking_id,
            "facility_id": self.facility_id,
            "slot_id": self.slot_id,
            "duration_minutes": self.duration_minutes,
            "total_amount": str(self.total_amount),
        }


class BookingCancelledEvent(DomainEvent):
    """Event raised when a booking is cancelled"""

    event_type = "booking.cancelled"

    def __init__(
        self,
        booking_id: str,
        facility_id: str,
        slot_id: str,
        timestamp: Optional[datetime] = None
    ):
        super().__init__(timestamp)
        self.booking_id = booking_id
        self.facility_id = facility_id
        self.slot_id = slot_id

    def payload(self) -> Dict[str, Any]:
        return {
            "booking_id": self.booking_id,
            "facility_id": self.facility_id,
            "slot_id": self.slot_id,
        }
