# File: src/parksmart/application/dtos.py
"""
Data Transfer Objects (DTOs) for the ParkSmart booking core

This module defines DTOs for data transfer between layers:
1. Input DTOs - facility registration and booking requests
2. Output DTOs - read-only projections of facilities, slots and bookings
3. Result DTOs - success/failure envelopes returned by the booking service

DTO Principles:
- Validation at creation (pydantic)
- No business logic, only data
- Serialization/deserialization support
"""

from typing import Dict, List, Optional, Any
from datetime import datetime
from decimal import Decimal
from enum import Enum
import json
from pydantic import BaseModel, Field, ConfigDict, field_validator

from ..domain.models import Slot, PriceBreakdown
from ..domain.aggregates import Facility, Booking


# ============================================================================
# BASE DTO CLASSES
# ============================================================================

class BaseDTO(BaseModel):
    """Base DTO with common functionality"""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        use_enum_values=True,
    )

    def to_dict(self, exclude_none: bool = False, **kwargs) -> Dict[str, Any]:
        """Convert DTO to dictionary"""
        data = self.model_dump(**kwargs)
        if exclude_none:
            data = {k: v for k, v in data.items() if v is not None}
        return data

    def to_json(self, **kwargs) -> str:
        """Convert DTO to JSON string"""
        return self.model_dump_json(**kwargs)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BaseDTO':
        """Create DTO from dictionary"""
        return cls(**data)

    @classmethod
    def from_json(cls, json_str: str) -> 'BaseDTO':
        """Create DTO from JSON string"""
        return cls(**json.loads(json_str))


# ============================================================================
# ENUM DTOs
# ============================================================================

class VehicleCategoryDTO(str, Enum):
    """Vehicle category DTO"""
    CAR = "car"
    BIKE = "bike"
    EV = "ev"


class SlotStatusDTO(str, Enum):
    """Slot status DTO"""
    AVAILABLE = "available"
    RESERVED = "reserved"
    OCCUPIED = "occupied"


class BookingStatusDTO(str, Enum):
    """Booking status DTO"""
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatusDTO(str, Enum):
    """Payment status DTO"""
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


# ============================================================================
# PRICING / SLOT / FACILITY DTOs
# ============================================================================

class PriceBreakdownDTO(BaseDTO):
    """DTO for a price breakdown"""
    base: Decimal = Field(description="Base hourly rate")
    occupancy_multiplier: Decimal = Field(default=Decimal('1'), description="Occupancy tier multiplier")
    occupancy_label: str = Field(default="Standard rate", description="Occupancy tier label")
    peak_multiplier: Decimal = Field(default=Decimal('1'), description="Peak hour multiplier")
    peak_label: str = Field(default="", description="Peak hour label")
    final: Decimal = Field(description="Effective hourly rate")


class SlotDTO(BaseDTO):
    """DTO for a slot"""
    id: str = Field(description="Slot id, e.g. F1-A1")
    label: str = Field(description="Display label")
    floor: int = Field(ge=0, description="Zero-based floor index")
    row: int = Field(ge=0, description="Zero-based row index")
    column: int = Field(ge=0, description="Zero-based column index")
    category: VehicleCategoryDTO = Field(description="Accepted vehicle category")
    status: SlotStatusDTO = Field(description="Slot status")


class FacilityCreateDTO(BaseDTO):
    """DTO for facility registration"""
    name: str = Field(min_length=1, max_length=100, description="Facility name")
    address: str = Field(default="", max_length=255, description="Street address")
    floors: int = Field(ge=1, description="Number of floors")
    rows: int = Field(ge=1, le=26, description="Rows per floor (lettered A-Z)")
    columns: int = Field(ge=1, description="Columns per row")
    vehicle_categories: List[VehicleCategoryDTO] = Field(min_length=1, description="Supported vehicle categories")
    base_rate: Decimal = Field(gt=0, description="Base hourly rate")
    dynamic_pricing: bool = Field(default=True, description="Enable dynamic pricing")
    owner_id: str = Field(min_length=1, description="Owner reference")
    owner_name: str = Field(default="", description="Owner display name")

    @field_validator('vehicle_categories')
    @classmethod
    def validate_unique_categories(cls, v):
        """Each category may be listed once"""
        if len(set(v)) != len(v):
            raise ValueError("Vehicle categories must not repeat")
        return v


class FacilityDTO(BaseDTO):
    """DTO for a facility projection"""
    id: str
    name: str
    address: str
    owner_id: str
    owner_name: str = ""
    floors: int
    rows: int
    columns: int
    vehicle_categories: List[VehicleCategoryDTO]
    base_rate: Decimal
    dynamic_pricing: bool
    total_slots: int
    available_slots: int
    reserved_slots: int
    occupied_slots: int
    occupancy_rate: float = Field(ge=0, le=1)
    current_price: Optional[PriceBreakdownDTO] = None
    slots: List[SlotDTO] = Field(default_factory=list)
    created_at: Optional[datetime] = None


# ============================================================================
# BOOKING DTOs
# ============================================================================

class BookingRequestDTO(BaseDTO):
    """DTO for a booking request"""
    facility_id: str = Field(min_length=1, description="Facility id")
    customer_id: str = Field(min_length=1, description="Customer reference")
    vehicle_category: VehicleCategoryDTO = Field(description="Vehicle category")
    slot_id: Optional[str] = Field(default=None, description="Specific slot; allocated automatically when omitted")
    customer_name: str = Field(default="", description="Customer display name")
    customer_phone: str = Field(default="", description="Customer phone")
    vehicle_number: str = Field(default="", description="Already-normalized vehicle identifier")
    scheduled_date: Optional[str] = Field(default=None, description="Scheduled date from the booking form")
    scheduled_time: Optional[str] = Field(default=None, description="Scheduled time from the booking form")

    @field_validator('slot_id')
    @classmethod
    def normalize_slot_id(cls, v):
        if v is None:
            return None
        v = v.strip().upper()
        return v or None


class BookingDTO(BaseDTO):
    """DTO for a booking projection"""
    id: str
    customer_id: str
    customer_name: str = ""
    customer_phone: str = ""
    vehicle_number: str = ""
    facility_id: str
    facility_name: str = ""
    facility_address: str = ""
    owner_id: str = ""
    slot_id: str
    vehicle_category: VehicleCategoryDTO
    start_time: datetime
    scheduled_date: Optional[str] = None
    scheduled_time: Optional[str] = None
    end_time: Optional[datetime] = None
    status: BookingStatusDTO
    payment_status: PaymentStatusDTO
    hourly_rate: Decimal
    price_breakdown: PriceBreakdownDTO
    duration_minutes: int = Field(ge=0)
    total_amount: Decimal
    created_at: datetime


class ReceiptLineDTO(BaseDTO):
    """One adjustment line on a receipt"""
    label: str
    multiplier: Decimal


class ReceiptDTO(BaseDTO):
    """DTO for a booking receipt"""
    booking_id: str
    customer_name: str
    vehicle_number: str
    facility_name: str
    slot_id: str
    vehicle_category: str
    start_time: datetime
    end_time: Optional[datetime] = None
    duration_hours: int
    duration_remainder_minutes: int
    base_rate: Decimal
    adjustments: List[ReceiptLineDTO] = Field(default_factory=list)
    effective_rate: Decimal
    total_amount: Decimal
    payment_status: PaymentStatusDTO


# ============================================================================
# RESULT DTOs
# ============================================================================

class ResultDTO(BaseDTO):
    """Standard success/failure envelope"""
    success: bool = Field(description="Success flag")
    message: Optional[str] = Field(default=None, description="Human-readable result message")
    error_code: Optional[str] = Field(default=None, description="Stable error code on failure")
    timestamp: datetime = Field(default_factory=datetime.now, description="Result timestamp")


class FacilityResultDTO(ResultDTO):
    facility: Optional[FacilityDTO] = None


class FacilityListDTO(ResultDTO):
    facilities: List[FacilityDTO] = Field(default_factory=list)


class BookingResultDTO(ResultDTO):
    booking: Optional[BookingDTO] = None


class BookingListDTO(ResultDTO):
    bookings: List[BookingDTO] = Field(default_factory=list)


class SlotSuggestionDTO(ResultDTO):
    slot: Optional[SlotDTO] = None


class QuoteDTO(ResultDTO):
    facility_id: Optional[str] = None
    occupancy_rate: Optional[float] = None
    breakdown: Optional[PriceBreakdownDTO] = None


class ReceiptResultDTO(ResultDTO):
    receipt: Optional[ReceiptDTO] = None


class MisparkCheckDTO(ResultDTO):
    booking_id: Optional[str] = None
    booked_slot_id: Optional[str] = None
    reported_slot_id: Optional[str] = None
    mispark_detected: Optional[bool] = None


class OwnerStatsDTO(ResultDTO):
    owner_id: Optional[str] = None
    facilities: int = 0
    total_slots: int = 0
    available_slots: int = 0
    booked_slots: int = 0
    active_bookings: int = 0
    total_earnings: Decimal = Decimal('0.00')


# ============================================================================
# DTO FACTORY
# ============================================================================

class DTOFactory:
    """Factory for building projection DTOs from domain objects"""

    @staticmethod
    def create_breakdown(breakdown: PriceBreakdown) -> PriceBreakdownDTO:
        return PriceBreakdownDTO(
            base=breakdown.base,
            occupancy_multiplier=breakdown.occupancy_multiplier,
            occupancy_label=breakdown.occupancy_label,
            peak_multiplier=breakdown.peak_multiplier,
            peak_label=breakdown.peak_label,
            final=breakdown.final
        )

    @staticmethod
    def create_slot(slot: Slot) -> SlotDTO:
        return SlotDTO(
            id=slot.id,
            label=slot.label,
            floor=slot.floor,
            row=slot.row,
            column=slot.column,
            category=slot.category.value,
            status=slot.status.value
        )

    @staticmethod
    def create_facility(
        facility: Facility,
        current_price: Optional[PriceBreakdown] = None,
        include_slots: bool = False
    ) -> FacilityDTO:
        counts = {status.value: n for status, n in facility.count_by_status().items()}
        return FacilityDTO(
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
            total_slots=facility.capacity,
            available_slots=counts["available"],
            reserved_slots=counts["reserved"],
            occupied_slots=counts["occupied"],
            occupancy_rate=float(facility.occupancy_rate()),
            current_price=DTOFactory.create_breakdown(current_price) if current_price else None,
            slots=[DTOFactory.create_slot(s) for s in facility.slots] if include_slots else [],
            created_at=facility.created_at
        )

    @staticmethod
    def create_booking(booking: Booking) -> BookingDTO:
        return BookingDTO(
            id=booking.id,
            customer_id=booking.customer_id,
            customer_name=booking.customer_name,
            customer_phone=booking.customer_phone,
            vehicle_number=booking.vehicle_number,
            facility_id=booking.facility_id,
            facility_name=booking.facility_name,
            facility_address=booking.facility_address,
            owner_id=booking.owner_id,
            slot_id=booking.slot_id,
            vehicle_category=booking.category.value,
            start_time=booking.start_time,
            scheduled_date=booking.scheduled_date,
            scheduled_time=booking.scheduled_time,
            end_time=booking.end_time,
            status=booking.status.value,
            payment_status=booking.payment_status.value,
            hourly_rate=booking.hourly_rate,
            price_breakdown=DTOFactory.create_breakdown(booking.price_breakdown),
            duration_minutes=booking.duration_minutes,
            total_amount=booking.total_amount,
            created_at=booking.created_at
        )

    @staticmethod
    def create_receipt(booking: Booking) -> ReceiptDTO:
        """Receipt projection; adjustment lines only for multipliers other than 1"""
        breakdown = booking.price_breakdown
        adjustments = []
        if breakdown.occupancy_multiplier != 1:
            adjustments.append(ReceiptLineDTO(label=breakdown.occupancy_label,
                                              multiplier=breakdown.occupancy_multiplier))
        if breakdown.peak_multiplier != 1:
            adjustments.append(ReceiptLineDTO(label=breakdown.peak_label,
                                              multiplier=breakdown.peak_multiplier))

        hours, minutes = divmod(booking.duration_minutes, 60)
        return ReceiptDTO(
            booking_id=booking.id,
            customer_name=booking.customer_name,
            vehicle_number=booking.vehicle_number,
            facility_name=booking.facility_name,
            slot_id=booking.slot_id,
            vehicle_category=booking.category.value.upper(),
            start_time=booking.start_time,
            end_time=booking.end_time,
            duration_hours=hours,
            duration_remainder_minutes=minutes,
            base_rate=breakdown.base,
            adjustments=adjustments,
            effective_rate=booking.hourly_rate,
            total_amount=booking.total_amount,
            payment_status=booking.payment_status.value
        )
