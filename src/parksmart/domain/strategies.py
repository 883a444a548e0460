# File: src/parksmart/domain/strategies.py
"""
Strategy Pattern Implementation for slot allocation and pricing

Each algorithm is encapsulated in a strategy so it can be swapped or tuned
at runtime; the engines pick the strategy and are what the booking service
talks to.

Key Strategies:
1. Allocation Strategies - choose the best available slot for a category
2. Pricing Strategies - derive the effective hourly rate of a facility

Both engines are pure with respect to facility state: they read slot
statuses and never mutate them.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, List, Tuple
from datetime import datetime
from decimal import Decimal
import logging

from .models import Slot, VehicleCategory, PriceBreakdown, round_money, STANDARD_RATE_LABEL
from .aggregates import Facility


# ============================================================================
# POLICY VALUE OBJECTS
# ============================================================================

@dataclass(frozen=True)
class AllocationWeights:
    """Value Object: weights of the allocation score components"""
    distance: float = 0.5
    occupancy: float = 0.3
    accessibility: float = 0.2

    def __post_init__(self):
        """Validate weights"""
        if min(self.distance, self.occupancy, self.accessibility) < 0:
            raise ValueError("Allocation weights cannot be negative")

        # Each component is in [0, 1]; weights summing to 1 keep the score there too
        total = self.distance + self.occupancy + self.accessibility
        if abs(total - 1.0) > 1e-9:
            raise ValueError(f"Allocation weights must sum to 1.0, got: {total}")


@dataclass(frozen=True)
class PricingPolicy:
    """
    Value Object: occupancy tiers and the peak-hour window

    Tiers are checked in priority order: high (strictly above), moderate
    (at or above), low (strictly below). Anything else is charged at base.
    """
    high_threshold: Decimal = Decimal('0.8')
    high_multiplier: Decimal = Decimal('1.5')
    high_label: str = "High demand (+50%)"
    moderate_threshold: Decimal = Decimal('0.5')
    moderate_multiplier: Decimal = Decimal('1.2')
    moderate_label: str = "Moderate demand (+20%)"
    low_threshold: Decimal = Decimal('0.4')
    low_multiplier: Decimal = Decimal('0.8')
    low_label: str = "Low demand (−20%)"
    peak_start_hour: int = 18
    peak_end_hour: int = 22  # inclusive
    peak_multiplier: Decimal = Decimal('1.2')
    peak_label: str = "Peak hours 6–10 PM (+20%)"

    def __post_init__(self):
        """Validate policy values"""
        if not (Decimal('0') <= self.low_threshold <= self.moderate_threshold
                <= self.high_threshold <= Decimal('1')):
            raise ValueError("Occupancy thresholds must satisfy 0 <= low <= moderate <= high <= 1")

        if not (0 <= self.peak_start_hour <= self.peak_end_hour <= 23):
            raise ValueError("Peak hours must satisfy 0 <= start <= end <= 23")

        for name in ("high_multiplier", "moderate_multiplier", "low_multiplier", "peak_multiplier"):
            if getattr(self, name) <= Decimal('0'):
                raise ValueError(f"{name} must be positive")

    def is_peak_hour(self, hour: int) -> bool:
        return self.peak_start_hour <= hour <= self.peak_end_hour


# ============================================================================
# STRATEGY INTERFACES
# ============================================================================

class AllocationStrategy(ABC):
    """
    Abstract base class for allocation strategies
    Defines the interface for slot selection algorithms
    """

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def select_slot(self, facility: Facility, category: VehicleCategory) -> Optional[Slot]:
        """
        Pick a slot for the category without reserving it
        Returns: Slot if one is available, None otherwise
        """
        pass

    def get_strategy_name(self) -> str:
        """Get human-readable strategy name"""
        return self.__class__.__name__.replace("Strategy", "")

    def __str__(self) -> str:
        return f"{self.get_strategy_name()} Strategy"


class PricingStrategy(ABC):
    """
    Abstract base class for pricing strategies
    Defines the interface for hourly rate calculation
    """

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def quote(self, facility: Facility, now: datetime) -> PriceBreakdown:
        """
        Compute the facility's effective hourly rate at the given instant
        Returns: PriceBreakdown
        """
        pass

    def get_strategy_name(self) -> str:
        return self.__class__.__name__.replace("Strategy", "")

    def __str__(self) -> str:
        return f"{self.get_strategy_name()} Strategy"


# ============================================================================
# ALLOCATION STRATEGIES
# ============================================================================

@dataclass(frozen=True)
class SlotScore:
    """Score components of one candidate slot (lower is better)"""
    slot: Slot
    distance: float
    occupancy: float
    accessibility: float
    weighted: float


class WeightedScoreStrategy(AllocationStrategy):
    """
    Strategy: single greedy pass over available slots of the category
    - distance: how far the slot is from the entrance corner
    - occupancy: how busy the slot's floor already is
    - accessibility: how deep the slot sits from the side aisles
    The lowest weighted score wins; ties keep the earliest candidate.
    """

    def __init__(self, weights: Optional[AllocationWeights] = None):
        super().__init__()
        self.weights = weights or AllocationWeights()

    def score_candidates(self, facility: Facility, category: VehicleCategory) -> List[SlotScore]:
        """Score every available slot of the category, in facility order"""
        candidates = [s for s in facility.slots if s.is_available and s.accepts(category)]
        if not candidates:
            return []

        geometry = facility.geometry
        floor_occupancy = facility.floor_occupancy()

        max_floor = max(geometry.floors - 1, 1)
        max_row = max(geometry.rows - 1, 1)
        max_column = max(geometry.columns - 1, 1)
        max_distance = max(1, max_floor + max_row + max_column)
        max_edge = max(1, max_column // 2 + max_row)

        scores = []
        for slot in candidates:
            distance = (slot.floor + slot.row + slot.column) / max_distance
            occupancy = floor_occupancy.get(slot.floor, 0.0)
            edge = min(slot.column, max_column - slot.column) + slot.row
            accessibility = edge / max_edge
            weighted = (self.weights.distance * distance
                        + self.weights.occupancy * occupancy
                        + self.weights.accessibility * accessibility)
            scores.append(SlotScore(slot, distance, occupancy, accessibility, weighted))
        return scores

    def select_slot(self, facility: Facility, category: VehicleCategory) -> Optional[Slot]:
        best: Optional[SlotScore] = None
        for score in self.score_candidates(facility, category):
            if best is None or score.weighted < best.weighted:
                best = score

        if best is None:
            self.logger.debug(f"No available {category.value} slot in {facility.name}")
            return None

        self.logger.debug(f"Best {category.value} slot in {facility.name}: "
                          f"{best.slot.id} (score {best.weighted:.4f})")
        return best.slot


class AllocationEngine:
    """
    Selects the single best available slot for a vehicle category

    Selection never reserves; reserving is a separate step of the booking flow.
    """

    def __init__(self, strategy: Optional[AllocationStrategy] = None):
        self.strategy = strategy or WeightedScoreStrategy()
        self.logger = logging.getLogger(self.__class__.__name__)

    def find_optimal(self, facility: Facility, category: VehicleCategory) -> Optional[Slot]:
        """Returns: best Slot, or None when no slot of the category is available"""
        slot = self.strategy.select_slot(facility, category)
        self.logger.debug(f"{self.strategy} picked {slot.id if slot else 'nothing'} "
                          f"for {category.value} in {facility.name}")
        return slot


# ============================================================================
# PRICING STRATEGIES
# ============================================================================

class StandardPricingStrategy(PricingStrategy):
    """
    Standard pricing strategy
    - Base hourly rate, no adjustments
    """

    def quote(self, facility: Facility, now: datetime) -> PriceBreakdown:
        return PriceBreakdown.flat(facility.base_rate)


class DynamicPricingStrategy(PricingStrategy):
    """
    Dynamic pricing strategy based on demand
    - One occupancy tier applied by priority
    - Independent peak-hour surcharge on the local hour of day
    """

    def __init__(self, policy: Optional[PricingPolicy] = None):
        super().__init__()
        self.policy = policy or PricingPolicy()

    def quote(self, facility: Facility, now: datetime) -> PriceBreakdown:
        occupancy = facility.occupancy_rate()
        occupancy_multiplier, occupancy_label = self._occupancy_adjustment(occupancy)
        peak_multiplier, peak_label = self._peak_adjustment(now)

        final = round_money(facility.base_rate * occupancy_multiplier * peak_multiplier)
        self.logger.debug(f"Quote for {facility.name}: occupancy {float(occupancy):.2%}, "
                          f"hour {now.hour} -> {final}")

        return PriceBreakdown(
            base=facility.base_rate,
            final=final,
            occupancy_multiplier=occupancy_multiplier,
            occupancy_label=occupancy_label,
            peak_multiplier=peak_multiplier,
            peak_label=peak_label
        )

    def _occupancy_adjustment(self, occupancy: Decimal) -> Tuple[Decimal, str]:
        """
        Business rule: busier facilities cost more, quiet ones less
        The high tier is strictly above its threshold, the low tier strictly below.
        """
        policy = self.policy
        if occupancy > policy.high_threshold:
            return policy.high_multiplier, policy.high_label
        elif occupancy >= policy.moderate_threshold:
            return policy.moderate_multiplier, policy.moderate_label
        elif occupancy < policy.low_threshold:
            return policy.low_multiplier, policy.low_label
        else:
            return Decimal('1'), STANDARD_RATE_LABEL

    def _peak_adjustment(self, now: datetime) -> Tuple[Decimal, str]:
        if self.policy.is_peak_hour(now.hour):
            return self.policy.peak_multiplier, self.policy.peak_label
        return Decimal('1'), ""


class PricingEngine:
    """
    Computes a facility's current effective hourly rate

    Pure function of the facility's slot statuses and the supplied instant.
    """

    def __init__(
        self,
        policy: Optional[PricingPolicy] = None,
        standard: Optional[PricingStrategy] = None,
        dynamic: Optional[PricingStrategy] = None
    ):
        self.standard = standard or StandardPricingStrategy()
        self.dynamic = dynamic or DynamicPricingStrategy(policy)
        self.logger = logging.getLogger(self.__class__.__name__)

    def strategy_for(self, facility: Facility) -> PricingStrategy:
        return self.dynamic if facility.dynamic_pricing else self.standard

    def quote(self, facility: Facility, now: datetime) -> PriceBreakdown:
        return self.strategy_for(facility).quote(facility, now)
