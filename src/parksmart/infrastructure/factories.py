# File: src/parksmart/infrastructure/factories.py
"""
Factory Pattern Implementation for the ParkSmart booking core

Factories centralize construction of aggregates that need more than a
constructor call:
1. FacilityFactory - builds a facility and its generated slot grid
2. DemoDataSeeder - builds a pre-populated showcase facility
"""

from abc import ABC, abstractmethod
from typing import TypeVar, Generic, Optional, List, Sequence, Any
from decimal import Decimal
import logging
import random

from ..domain.models import VehicleCategory, FacilityGeometry, SlotStatus
from ..domain.aggregates import Facility
from ..domain.inventory import SlotInventory
from ..application.dtos import FacilityCreateDTO


T = TypeVar('T')


# ============================================================================
# ABSTRACT FACTORY INTERFACES
# ============================================================================

class Factory(ABC, Generic[T]):
    """Abstract base factory"""

    @abstractmethod
    def create(self, **kwargs) -> T:
        """Create an instance"""
        pass


# ============================================================================
# FACILITY FACTORY
# ============================================================================

class FacilityFactory(Factory[Facility]):
    """Factory for creating facilities with their slot grid"""

    def __init__(self, inventory: Optional[SlotInventory] = None):
        self.inventory = inventory or SlotInventory()
        self._logger = logging.getLogger(self.__class__.__name__)

    def create(
        self,
        name: str,
        floors: int,
        rows: int,
        columns: int,
        vehicle_categories: Sequence[Any],
        base_rate: Decimal,
        owner_id: str,
        owner_name: str = "",
        address: str = "",
        dynamic_pricing: bool = True,
        id: Optional[str] = None
    ) -> Facility:
        """
        Create a facility with every slot available
        Raises: ValueError / InvalidFacilityConfiguration on bad input
        """
        categories = [VehicleCategory(c) if not isinstance(c, VehicleCategory) else c
                      for c in vehicle_categories]
        slots = self.inventory.generate(floors, rows, columns, categories)

        facility = Facility.register(
            id=id,
            name=name.strip(),
            address=address.strip(),
            geometry=FacilityGeometry(floors, rows, columns),
            vehicle_categories=categories,
            base_rate=base_rate,
            slots=slots,
            owner_id=owner_id,
            owner_name=owner_name,
            dynamic_pricing=dynamic_pricing
        )
        self._logger.debug(f"Created facility {facility.name} with {facility.capacity} slots")
        return facility

    def create_from_dto(self, dto: FacilityCreateDTO) -> Facility:
        """Create facility from a validated registration DTO"""
        return self.create(
            name=dto.name,
            address=dto.address,
            floors=dto.floors,
            rows=dto.rows,
            columns=dto.columns,
            vehicle_categories=dto.vehicle_categories,
            base_rate=dto.base_rate,
            dynamic_pricing=dto.dynamic_pricing,
            owner_id=dto.owner_id,
            owner_name=dto.owner_name
        )


# ============================================================================
# DEMO DATA
# ============================================================================

class DemoDataSeeder:
    """
    Builds the showcase facility used by the demo run

    A share of slots is marked busy at random; each busy slot is occupied
    or reserved. This is the only place slots start out occupied.
    """

    FACILITY_ID = "demo"
    BUSY_SHARE = 0.55
    OCCUPIED_CHANCE = 0.7

    def __init__(self, seed: Optional[int] = None, factory: Optional[FacilityFactory] = None):
        self.random = random.Random(seed)
        self.factory = factory or FacilityFactory()
        self._logger = logging.getLogger(self.__class__.__name__)

    def create_facility(self) -> Facility:
        facility = self.factory.create(
            id=self.FACILITY_ID,
            name="Downtown Mall Parking",
            address="123 Main Street, City Center",
            floors=3,
            rows=5,
            columns=8,
            vehicle_categories=[VehicleCategory.CAR, VehicleCategory.BIKE, VehicleCategory.EV],
            base_rate=Decimal('60'),
            owner_id="demo_owner",
            owner_name="Demo",
            dynamic_pricing=True
        )
        self.mark_busy(facility)
        return facility

    def mark_busy(self, facility: Facility) -> List[str]:
        """Mark a random share of slots busy; returns the affected slot ids"""
        slots = facility.slots
        busy_count = int(len(slots) * self.BUSY_SHARE)
        chosen = self.random.sample(slots, busy_count)

        for slot in chosen:
            if self.random.random() < self.OCCUPIED_CHANCE:
                slot.status = SlotStatus.OCCUPIED
            else:
                slot.status = SlotStatus.RESERVED
            facility.slot_changed(slot)

        self._logger.info(f"Seeded {busy_count} busy slots in {facility.name}")
        return [slot.id for slot in chosen]
