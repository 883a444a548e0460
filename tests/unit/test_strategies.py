#!/usr/bin/env python3
"""
Unit tests for the allocation and pricing engines
"""

import random
import unittest
from datetime import datetime
from decimal import Decimal

from parksmart.domain.models import VehicleCategory, SlotStatus, FacilityGeometry
from parksmart.domain.aggregates import Facility
from parksmart.domain.inventory import SlotInventory
from parksmart.domain.strategies import (
    AllocationEngine, AllocationWeights, WeightedScoreStrategy,
    PricingEngine, PricingPolicy, DynamicPricingStrategy, StandardPricingStrategy
)


CAR = VehicleCategory.CAR
NOON = datetime(2024, 5, 1, 12, 0)


def build_facility(floors, rows, columns, categories=(CAR,), base_rate='60', dynamic_pricing=True):
    categories = list(categories)
    return Facility(
        name="Strategy Test Lot",
        address="",
        geometry=FacilityGeometry(floors, rows, columns),
        vehicle_categories=categories,
        base_rate=Decimal(base_rate),
        slots=SlotInventory.generate(floors, rows, columns, categories),
        owner_id="owner-1",
        dynamic_pricing=dynamic_pricing
    )


def with_booked(facility, count, status=SlotStatus.OCCUPIED):
    for slot in facility.slots[:count]:
        slot.status = status
    return facility


# ============================================================================
# ALLOCATION
# ============================================================================

class TestAllocationEngine(unittest.TestCase):
    """Unit tests for AllocationEngine / WeightedScoreStrategy"""

    def setUp(self):
        self.engine = AllocationEngine()

    def test_empty_facility_picks_entrance_slot(self):
        facility = build_facility(2, 3, 4)
        self.assertEqual(self.engine.find_optimal(facility, CAR).id, "F1-A1")

    def test_returns_none_when_category_not_offered(self):
        facility = build_facility(1, 2, 2, categories=[VehicleCategory.BIKE])
        self.assertIsNone(self.engine.find_optimal(facility, CAR))

    def test_returns_none_when_category_fully_booked(self):
        facility = build_facility(1, 2, 3, categories=[CAR, VehicleCategory.EV])
        for slot in facility.slots:
            if slot.category == CAR:
                slot.status = SlotStatus.RESERVED

        self.assertIsNone(self.engine.find_optimal(facility, CAR))
        self.assertIsNotNone(self.engine.find_optimal(facility, VehicleCategory.EV))

    def test_only_returns_available_slots_of_category(self):
        facility = build_facility(3, 5, 8, categories=[CAR, VehicleCategory.BIKE, VehicleCategory.EV])
        rng = random.Random(3)
        for slot in facility.slots:
            slot.status = rng.choice(list(SlotStatus))

        for category in VehicleCategory:
            with self.subTest(category=category):
                slot = self.engine.find_optimal(facility, category)
                has_candidates = any(s.is_available and s.accepts(category) for s in facility.slots)
                self.assertEqual(slot is not None, has_candidates)
                if slot is not None:
                    self.assertTrue(slot.is_available)
                    self.assertEqual(slot.category, category)

    def test_scores_are_normalized(self):
        strategy = WeightedScoreStrategy()
        shapes = [(1, 1, 1), (1, 1, 5), (3, 5, 8), (2, 26, 3), (4, 1, 1)]
        rng = random.Random(11)

        for floors, rows, columns in shapes:
            facility = build_facility(floors, rows, columns)
            for slot in facility.slots:
                if rng.random() < 0.4:
                    slot.status = SlotStatus.RESERVED
            for score in strategy.score_candidates(facility, CAR):
                with self.subTest(shape=(floors, rows, columns), slot=score.slot.id):
                    for value in (score.distance, score.occupancy, score.accessibility, score.weighted):
                        self.assertGreaterEqual(value, 0.0)
                        self.assertLessEqual(value, 1.0)

    def test_ties_keep_earliest_candidate(self):
        engine = AllocationEngine(WeightedScoreStrategy(
            AllocationWeights(distance=0.0, occupancy=1.0, accessibility=0.0)
        ))
        facility = build_facility(1, 1, 3)
        facility.get_slot("F1-A1").status = SlotStatus.RESERVED

        self.assertEqual(engine.find_optimal(facility, CAR).id, "F1-A2")

    def test_busy_floor_pushes_to_next_floor(self):
        facility = build_facility(2, 1, 2)
        facility.get_slot("F1-A1").status = SlotStatus.RESERVED

        # F1-A2: 0.5 * 1/3 + 0.3 * 0.5 = 0.3167; F2-A1: 0.5 * 1/3 = 0.1667
        self.assertEqual(self.engine.find_optimal(facility, CAR).id, "F2-A1")

    def test_selection_does_not_mutate_statuses(self):
        facility = build_facility(2, 2, 2)
        before = [s.status for s in facility.slots]

        self.engine.find_optimal(facility, CAR)

        self.assertEqual([s.status for s in facility.slots], before)

    def test_weights_validation(self):
        test_cases = [
            {"distance": -0.1, "occupancy": 0.6, "accessibility": 0.5},
            {"distance": 0.5, "occupancy": 0.5, "accessibility": 0.5},
        ]
        for kwargs in test_cases:
            with self.subTest(weights=kwargs):
                with self.assertRaises(ValueError):
                    AllocationWeights(**kwargs)


# ============================================================================
# PRICING
# ============================================================================

class TestPricingEngine(unittest.TestCase):
    """Unit tests for PricingEngine"""

    def setUp(self):
        self.engine = PricingEngine()

    def test_occupancy_tiers(self):
        # (total slots, booked slots, multiplier, label, final)
        test_cases = [
            (10, 10, Decimal('1.5'), "High demand (+50%)", Decimal('90.00')),
            (10, 9, Decimal('1.5'), "High demand (+50%)", Decimal('90.00')),
            (10, 8, Decimal('1.2'), "Moderate demand (+20%)", Decimal('72.00')),
            (10, 5, Decimal('1.2'), "Moderate demand (+20%)", Decimal('72.00')),
            (20, 9, Decimal('1'), "Standard rate", Decimal('60.00')),
            (10, 4, Decimal('1'), "Standard rate", Decimal('60.00')),
            (10, 3, Decimal('0.8'), "Low demand (−20%)", Decimal('48.00')),
            (10, 0, Decimal('0.8'), "Low demand (−20%)", Decimal('48.00')),
        ]
        for total, booked, multiplier, label, final in test_cases:
            with self.subTest(occupancy=f"{booked}/{total}"):
                facility = with_booked(build_facility(1, 1, total), booked)
                quote = self.engine.quote(facility, NOON)

                self.assertEqual(quote.occupancy_multiplier, multiplier)
                self.assertEqual(quote.occupancy_label, label)
                self.assertEqual(quote.peak_multiplier, Decimal('1'))
                self.assertEqual(quote.peak_label, "")
                self.assertEqual(quote.final, final)

    def test_reserved_slots_count_as_booked(self):
        facility = with_booked(build_facility(1, 1, 10), 9, SlotStatus.RESERVED)
        self.assertEqual(self.engine.quote(facility, NOON).occupancy_multiplier, Decimal('1.5'))

    def test_high_demand_at_peak_hour(self):
        facility = with_booked(build_facility(1, 1, 10), 9)

        quote = self.engine.quote(facility, datetime(2024, 5, 1, 19, 0))

        self.assertEqual(quote.occupancy_multiplier, Decimal('1.5'))
        self.assertEqual(quote.peak_multiplier, Decimal('1.2'))
        self.assertEqual(quote.peak_label, "Peak hours 6–10 PM (+20%)")
        self.assertEqual(quote.final, Decimal('108.00'))

    def test_peak_window_is_inclusive(self):
        facility = with_booked(build_facility(1, 1, 20), 9)
        test_cases = [
            (17, Decimal('1'), Decimal('60.00')),
            (18, Decimal('1.2'), Decimal('72.00')),
            (22, Decimal('1.2'), Decimal('72.00')),
            (23, Decimal('1'), Decimal('60.00')),
        ]
        for hour, multiplier, final in test_cases:
            with self.subTest(hour=hour):
                quote = self.engine.quote(facility, datetime(2024, 5, 1, hour, 59))
                self.assertEqual(quote.peak_multiplier, multiplier)
                self.assertEqual(quote.final, final)

    def test_flat_rate_when_dynamic_pricing_disabled(self):
        for booked in (0, 4, 9, 10):
            for hour in (3, 19):
                with self.subTest(booked=booked, hour=hour):
                    facility = with_booked(build_facility(1, 1, 10, dynamic_pricing=False), booked)
                    quote = self.engine.quote(facility, datetime(2024, 5, 1, hour))

                    self.assertEqual(quote.final, facility.base_rate)
                    self.assertEqual(quote.occupancy_multiplier, Decimal('1'))
                    self.assertEqual(quote.peak_multiplier, Decimal('1'))
                    self.assertFalse(quote.has_adjustments)

    def test_engine_selects_strategy_by_facility_setting(self):
        self.assertIsInstance(self.engine.strategy_for(build_facility(1, 1, 1)), DynamicPricingStrategy)
        self.assertIsInstance(
            self.engine.strategy_for(build_facility(1, 1, 1, dynamic_pricing=False)),
            StandardPricingStrategy
        )

    def test_rounds_half_up_to_cents(self):
        facility = with_booked(build_facility(1, 1, 10, base_rate='0.35'), 9)

        # 0.35 x 1.5 = 0.525
        self.assertEqual(self.engine.quote(facility, NOON).final, Decimal('0.53'))

    def test_quote_is_repeatable_and_pure(self):
        facility = with_booked(build_facility(1, 1, 10), 6)
        before = [s.status for s in facility.slots]

        first = self.engine.quote(facility, NOON)
        second = self.engine.quote(facility, NOON)

        self.assertEqual(first, second)
        self.assertEqual([s.status for s in facility.slots], before)

    def test_custom_peak_window(self):
        engine = PricingEngine(PricingPolicy(peak_start_hour=7, peak_end_hour=9))
        facility = with_booked(build_facility(1, 1, 20), 9)

        self.assertEqual(engine.quote(facility, datetime(2024, 5, 1, 8)).final, Decimal('72.00'))
        self.assertEqual(engine.quote(facility, datetime(2024, 5, 1, 19)).final, Decimal('60.00'))

    def test_policy_validation(self):
        test_cases = [
            {"peak_start_hour": 23, "peak_end_hour": 18},
            {"peak_end_hour": 24},
            {"low_threshold": Decimal('0.6')},
            {"high_multiplier": Decimal('0')},
        ]
        for kwargs in test_cases:
            with self.subTest(policy=kwargs):
                with self.assertRaises(ValueError):
                    PricingPolicy(**kwargs)


if __name__ == '__main__':
    unittest.main()
