#!/usr/bin/env python3
"""
Unit tests for the Booking aggregate and billing helpers
"""

import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from parksmart.domain.models import (
    VehicleCategory, BookingStatus, PaymentStatus, PriceBreakdown,
    FacilityGeometry, billable_minutes, settle_amount, round_money,
    to_utc_naive
)
from parksmart.domain.aggregates import Facility, Booking
from parksmart.domain.inventory import SlotInventory
from parksmart.domain.exceptions import InvalidStateTransition


START = datetime(2024, 5, 1, 19, 0, 0)


class TestBillingHelpers(unittest.TestCase):
    """Unit tests for billable_minutes / settle_amount"""

    def test_billable_minutes(self):
        test_cases = [
            (timedelta(0), 1),
            (timedelta(seconds=1), 1),
            (timedelta(seconds=60), 1),
            (timedelta(seconds=61), 2),
            (timedelta(milliseconds=90000), 2),
            (timedelta(hours=2, minutes=5), 125),
            (timedelta(hours=1, microseconds=1), 61),
        ]
        for elapsed, expected in test_cases:
            with self.subTest(elapsed=elapsed):
                self.assertEqual(billable_minutes(START, START + elapsed), expected)

    def test_billable_minutes_mixes_naive_utc_and_aware_bounds(self):
        lagos = timezone(timedelta(hours=1))
        aware_end = datetime(2024, 5, 1, 20, 1, 30, tzinfo=lagos)

        # START read back as naive UTC; 20:01:30+01:00 is 19:01:30 UTC
        self.assertEqual(billable_minutes(START, aware_end), 2)
        self.assertEqual(billable_minutes(START.replace(tzinfo=timezone.utc), aware_end), 2)

    def test_to_utc_naive(self):
        lagos = timezone(timedelta(hours=1))

        self.assertEqual(to_utc_naive(datetime(2024, 5, 1, 20, 0, tzinfo=lagos)), START)
        self.assertIs(to_utc_naive(START), START)
        self.assertIsNone(to_utc_naive(None))

    def test_settle_amount(self):
        test_cases = [
            (Decimal('108.00'), 2, Decimal('3.60')),
            (Decimal('60.00'), 60, Decimal('60.00')),
            (Decimal('60.00'), 1, Decimal('1.00')),
            (Decimal('45.00'), 1, Decimal('0.75')),
            (Decimal('0.30'), 5, Decimal('0.03')),   # 0.025 rounds up
            (Decimal('72.00'), 125, Decimal('150.00')),
        ]
        for rate, minutes, expected in test_cases:
            with self.subTest(rate=rate, minutes=minutes):
                self.assertEqual(settle_amount(rate, minutes), expected)

    def test_round_money_is_half_up(self):
        self.assertEqual(round_money(Decimal('2.345')), Decimal('2.35'))
        self.assertEqual(round_money(Decimal('2.344')), Decimal('2.34'))


class TestBookingAggregate(unittest.TestCase):
    """Unit tests for Booking"""

    def setUp(self):
        categories = [VehicleCategory.CAR]
        self.facility = Facility(
            name="Booking Test Lot",
            address="5 Harbour Street",
            geometry=FacilityGeometry(1, 1, 3),
            vehicle_categories=categories,
            base_rate=Decimal('60'),
            slots=SlotInventory.generate(1, 1, 3, categories),
            owner_id="owner-1"
        )
        self.breakdown = PriceBreakdown(
            base=Decimal('60'),
            final=Decimal('108.00'),
            occupancy_multiplier=Decimal('1.5'),
            occupancy_label="High demand (+50%)",
            peak_multiplier=Decimal('1.2'),
            peak_label="Peak hours 6–10 PM (+20%)"
        )
        self.booking = Booking.open(
            self.facility,
            self.facility.get_slot("F1-A2"),
            "customer-1",
            self.breakdown,
            START,
            customer_name="Asha",
            vehicle_number="KA01AB1234"
        )

    def test_open_snapshots_rate_and_details(self):
        booking = self.booking

        self.assertTrue(booking.id.startswith("BK-"))
        self.assertEqual(len(booking.id), 11)
        self.assertEqual(booking.status, BookingStatus.ACTIVE)
        self.assertEqual(booking.payment_status, PaymentStatus.PENDING)
        self.assertEqual(booking.hourly_rate, Decimal('108.00'))
        self.assertEqual(booking.price_breakdown, self.breakdown)
        self.assertEqual(booking.slot_id, "F1-A2")
        self.assertEqual(booking.category, VehicleCategory.CAR)
        self.assertEqual(booking.facility_name, "Booking Test Lot")
        self.assertEqual(booking.owner_id, "owner-1")
        self.assertEqual(booking.start_time, START)
        self.assertIsNone(booking.end_time)
        self.assertEqual(booking.duration_minutes, 0)
        self.assertEqual(booking.total_amount, Decimal('0'))
        self.assertEqual([e.event_type for e in booking.pending_events], ["booking.created"])

    def test_complete_settles_against_snapshot(self):
        end = START + timedelta(milliseconds=90000)

        self.booking.complete(end)

        self.assertEqual(self.booking.status, BookingStatus.COMPLETED)
        self.assertEqual(self.booking.payment_status, PaymentStatus.PAID)
        self.assertEqual(self.booking.end_time, end)
        self.assertEqual(self.booking.duration_minutes, 2)
        self.assertEqual(self.booking.total_amount, Decimal('3.60'))
        self.assertEqual(self.booking.version, 2)

    def test_cancel_charges_nothing(self):
        end = START + timedelta(minutes=30)

        self.booking.cancel(end)

        self.assertEqual(self.booking.status, BookingStatus.CANCELLED)
        self.assertEqual(self.booking.payment_status, PaymentStatus.CANCELLED)
        self.assertEqual(self.booking.end_time, end)
        self.assertEqual(self.booking.duration_minutes, 0)
        self.assertEqual(self.booking.total_amount, Decimal('0'))

    def test_terminal_states_are_final(self):
        test_cases = [
            ("complete", "complete"),
            ("complete", "cancel"),
            ("cancel", "complete"),
            ("cancel", "cancel"),
        ]
        for first, second in test_cases:
            with self.subTest(first=first, second=second):
                booking = Booking.open(
                    self.facility, self.facility.get_slot("F1-A1"), "customer-2",
                    self.breakdown, START
                )
                getattr(booking, first)(START + timedelta(minutes=10))
                snapshot = booking.to_dict()

                with self.assertRaises(InvalidStateTransition):
                    getattr(booking, second)(START + timedelta(minutes=20))
                self.assertEqual(booking.to_dict(), snapshot)

    def test_events_follow_transitions(self):
        self.booking.clear_events()
        self.booking.complete(START + timedelta(minutes=5))

        events = self.booking.clear_events()
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].event_type, "booking.completed")
        self.assertEqual(events[0].to_dict()["data"]["total_amount"], "9.00")


if __name__ == '__main__':
    unittest.main()
