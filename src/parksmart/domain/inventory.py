# File: src/parksmart/domain/inventory.py
"""
Slot Inventory - generation of a facility's slot grid and slot status transitions

Grid generation visits floors, then rows, then columns, and hands out vehicle
categories round-robin over the flattened visitation index. The order is fixed
so that the same inputs always yield the same slots.
"""

from typing import List, Sequence
import logging

from .models import Slot, VehicleCategory, FacilityGeometry
from .aggregates import Facility
from .exceptions import SlotUnavailable


class SlotInventory:
    """
    Domain Service: owns slot generation and available <-> reserved transitions
    """

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    @staticmethod
    def generate(
        floors: int,
        rows: int,
        columns: int,
        vehicle_categories: Sequence[VehicleCategory]
    ) -> List[Slot]:
        """
        Build the ordered slot grid for a facility

        Slot at flattened index i accepts vehicle_categories[i % len(categories)].
        Raises: ValueError for empty categories or invalid dimensions
        """
        geometry = FacilityGeometry(floors, rows, columns)
        if not vehicle_categories:
            raise ValueError("At least one vehicle category is required")

        categories = list(vehicle_categories)
        slots: List[Slot] = []
        index = 0
        for floor in range(geometry.floors):
            for row in range(geometry.rows):
                for column in range(geometry.columns):
                    slots.append(Slot(
                        floor=floor,
                        row=row,
                        column=column,
                        category=categories[index % len(categories)]
                    ))
                    index += 1
        return slots

    def reserve(self, facility: Facility, slot_id: str) -> Slot:
        """
        Reserve a slot of the facility
        Raises: SlotUnavailable unless the slot exists and is available
        """
        slot = facility.get_slot(slot_id)
        if slot is None:
            raise SlotUnavailable(f"Slot {slot_id} does not exist in {facility.name}")

        slot.reserve()
        facility.slot_changed(slot)
        self.logger.info(f"Reserved slot {slot.id} in {facility.name}")
        return slot

    def release(self, facility: Facility, slot_id: str) -> None:
        """
        Return a slot to the available pool

        Unconditional and idempotent; unknown slot ids are ignored.
        """
        slot = facility.get_slot(slot_id)
        if slot is None:
            self.logger.warning(f"Release of unknown slot {slot_id} in {facility.name} ignored")
            return

        slot.release()
        facility.slot_changed(slot)
        self.logger.info(f"Released slot {slot.id} in {facility.name}")
