# File: src/parksmart/main.py
"""
Main application entry point for ParkSmart
Wires the layers together and walks through a demo booking
"""

import logging

from .config import Settings, setup_logging
from .application.booking_service import BookingService, BookingServiceFactory
from .application.dtos import BookingRequestDTO
from .infrastructure.factories import DemoDataSeeder


def seed_demo_facility(service: BookingService, seed: int = 42) -> str:
    """Store the demo facility unless it already exists; returns its id"""
    with service.uow_factory() as uow:
        if not uow.facilities.exists(DemoDataSeeder.FACILITY_ID):
            uow.facilities.add(DemoDataSeeder(seed).create_facility())
    return DemoDataSeeder.FACILITY_ID


def run_demo(service: BookingService) -> None:
    """Example usage of the booking service"""
    logger = logging.getLogger("parksmart.demo")
    facility_id = seed_demo_facility(service)

    # Example 1: Facility status and current price
    facility = service.get_facility(facility_id, include_slots=False).facility
    print(f"{facility.name}: {facility.available_slots}/{facility.total_slots} available, "
          f"{facility.occupancy_rate:.1%} occupied")

    quote = service.quote(facility_id)
    breakdown = quote.breakdown
    print(f"Current rate: {breakdown.final}/hr (base {breakdown.base}, "
          f"{breakdown.occupancy_label}{', ' + breakdown.peak_label if breakdown.peak_label else ''})")

    # Example 2: Smart slot suggestion
    suggestion = service.find_optimal_slot(facility_id, "car")
    print(f"Suggested car slot: {suggestion.slot.label if suggestion.slot else 'none'}")

    # Example 3: Book, check parking position, end and print the receipt
    result = service.create_booking(BookingRequestDTO(
        facility_id=facility_id,
        customer_id="demo-customer",
        customer_name="Demo Customer",
        vehicle_category="car",
        vehicle_number="KA01AB1234"
    ))
    if not result.success:
        logger.warning(f"Demo booking failed: {result.message}")
        return

    booking = result.booking
    print(f"Booked {booking.slot_id} at {booking.hourly_rate}/hr (booking {booking.id})")
    print(service.check_mispark(booking.id, booking.slot_id).message)

    service.end_booking(booking.id)
    receipt = service.get_receipt(booking.id).receipt
    print(f"Receipt {receipt.booking_id}: {receipt.duration_hours}h {receipt.duration_remainder_minutes}m, "
          f"total {receipt.total_amount} ({receipt.payment_status})")


def main() -> None:
    settings = Settings.from_env()
    logger = setup_logging(settings)
    logger.info(f"Starting ParkSmart ({settings.storage_backend} storage)")

    service = BookingServiceFactory.create_default_service(settings)
    run_demo(service)


if __name__ == "__main__":
    main()
