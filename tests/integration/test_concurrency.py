#!/usr/bin/env python3
"""
Concurrent booking tests

Several threads submit booking requests at once. The store must hand each
slot to at most one booking and each customer at most one active booking
per facility, whether the requests go through one service or through
separate service instances sharing a store.
"""

import os
import shutil
import tempfile
import threading
import unittest
from collections import Counter
from datetime import datetime

from parksmart.domain.models import SlotStatus
from parksmart.infrastructure.repositories import InMemoryStore, RepositoryFactory
from parksmart.application.booking_service import BookingService, BookingServiceFactory
from parksmart.application.dtos import FacilityCreateDTO, BookingRequestDTO


NOW = datetime(2024, 5, 1, 12, 0)


def run_concurrently(target, arguments):
    """Start one thread per argument behind a barrier; returns results in argument order"""
    barrier = threading.Barrier(len(arguments))
    results = [None] * len(arguments)

    def worker(index, argument):
        barrier.wait()
        results[index] = target(argument)

    threads = [threading.Thread(target=worker, args=(i, arg)) for i, arg in enumerate(arguments)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return results


def facility_request(**overrides):
    data = dict(
        name="Race Lot", floors=1, rows=3, columns=4, vehicle_categories=["car"],
        base_rate="60", owner_id="owner-1"
    )
    data.update(overrides)
    return FacilityCreateDTO(**data)


class ConcurrencyChecks:
    """
    Scenarios shared by the in-memory and SQLite backends

    When requests are fully serialized every loser sees the winner's committed
    state and fails with the specific reason. Otherwise a loser may only find
    out at the slot compare-and-set and fails with SLOT_UNAVAILABLE.
    """

    serialized = True

    def make_services(self):
        raise NotImplementedError

    def setUp(self):
        self.services = self.make_services()
        created = self.services[0].create_facility(facility_request())
        self.assertTrue(created.success, created.message)
        self.facility_id = created.facility.id

    def request(self, customer_id, slot_id=None, category="car"):
        return BookingRequestDTO(
            facility_id=self.facility_id,
            customer_id=customer_id,
            vehicle_category=category,
            slot_id=slot_id
        )

    def submit(self, index_and_request):
        index, request = index_and_request
        service = self.services[index % len(self.services)]
        return service.create_booking(request)

    def test_same_slot_is_booked_once(self):
        requests = [(i, self.request(f"customer-{i}", slot_id="F1-B2")) for i in range(8)]

        results = run_concurrently(self.submit, requests)

        self.assertEqual(sum(1 for r in results if r.success), 1)
        self.assertEqual(
            Counter(r.error_code for r in results if not r.success),
            Counter({"SLOT_UNAVAILABLE": 7})
        )
        facility = self.services[0].get_facility(self.facility_id).facility
        self.assertEqual(facility.reserved_slots, 1)

    def test_automatic_allocation_hands_out_distinct_slots(self):
        requests = [(i, self.request(f"customer-{i}")) for i in range(12)]

        results = run_concurrently(self.submit, requests)

        winners = [r for r in results if r.success]
        slot_ids = [r.booking.slot_id for r in winners]
        self.assertEqual(len(set(slot_ids)), len(slot_ids))
        self.assertTrue(all(r.error_code == "SLOT_UNAVAILABLE" for r in results if not r.success))
        if self.serialized:
            self.assertEqual(len(winners), 12)
            overflow = self.services[0].create_booking(self.request("customer-late"))
            self.assertEqual(overflow.error_code, "SLOT_UNAVAILABLE")

        facility = self.services[0].get_facility(self.facility_id).facility
        self.assertEqual(facility.reserved_slots, len(winners))

    def test_same_customer_gets_one_active_booking(self):
        requests = [(i, self.request("customer-1")) for i in range(6)]

        results = run_concurrently(self.submit, requests)

        self.assertEqual(sum(1 for r in results if r.success), 1)
        expected_errors = {"DUPLICATE_ACTIVE_BOOKING"} if self.serialized else \
            {"DUPLICATE_ACTIVE_BOOKING", "SLOT_UNAVAILABLE"}
        self.assertTrue(all(r.error_code in expected_errors for r in results if not r.success))
        facility = self.services[0].get_facility(self.facility_id).facility
        self.assertEqual(facility.available_slots, 11)

    def test_end_and_cancel_race(self):
        booking_id = self.services[0].create_booking(self.request("customer-1")).booking.id
        service = self.services[-1]

        results = run_concurrently(
            lambda op: getattr(service, op)(booking_id),
            ["end_booking", "cancel_booking", "end_booking", "cancel_booking"]
        )

        self.assertEqual(sum(1 for r in results if r.success), 1)
        self.assertTrue(all(r.error_code == "INVALID_STATE_TRANSITION" for r in results if not r.success))
        facility = self.services[0].get_facility(self.facility_id).facility
        self.assertEqual(facility.available_slots, 12)


class TestInMemoryConcurrency(ConcurrencyChecks, unittest.TestCase):
    """One service on the in-memory store"""

    def make_services(self):
        return [BookingServiceFactory.create_in_memory_service(InMemoryStore(), clock=lambda: NOW)]


class TestInMemorySharedStoreConcurrency(ConcurrencyChecks, unittest.TestCase):
    """Two service instances over one in-memory store"""

    def make_services(self):
        store = InMemoryStore()
        return [
            BookingServiceFactory.create_in_memory_service(store, clock=lambda: NOW),
            BookingServiceFactory.create_in_memory_service(store, clock=lambda: NOW),
        ]


class TestSQLiteSharedDatabaseConcurrency(ConcurrencyChecks, unittest.TestCase):
    """Two service instances over one SQLite database file"""

    serialized = False

    def make_services(self):
        self.temp_dir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.temp_dir, True)
        database_url = f"sqlite:///{os.path.join(self.temp_dir, 'parksmart.db')}"
        uow_factory = RepositoryFactory.create_sqlalchemy_uow_factory(
            database_url,
            connect_args={"check_same_thread": False, "timeout": 30}
        )
        return [
            BookingService(uow_factory, clock=lambda: NOW),
            BookingService(uow_factory, clock=lambda: NOW),
        ]

    def test_slot_states_match_active_bookings(self):
        requests = [(i, self.request(f"customer-{i % 5}")) for i in range(10)]

        results = run_concurrently(self.submit, requests)

        winners = [r.booking for r in results if r.success]
        booked = {b.slot_id for b in winners}
        self.assertEqual(len(booked), len(winners))
        self.assertEqual(len({b.customer_id for b in winners}), len(winners))
        self.assertTrue(all(
            r.error_code in ("DUPLICATE_ACTIVE_BOOKING", "SLOT_UNAVAILABLE") for r in results if not r.success
        ))
        facility = self.services[0].get_facility(self.facility_id).facility
        reserved = {s.id for s in facility.slots if s.status == SlotStatus.RESERVED.value}
        self.assertEqual(reserved, booked)


if __name__ == '__main__':
    unittest.main()
