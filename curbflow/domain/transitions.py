"""Pure state transitions for slots and vehicles.

Every function returns a new model and leaves its argument untouched, so
registries can swap whole records and a snapshot never sees half an update.

Slot occupancy rule: ``occupiedCount`` counts held units (occupied or
reserved). Outside ``disabled``/``maintenance`` a slot is ``available``
exactly when nothing is held.
"""
from datetime import datetime
from typing import Optional

from curbflow.domain.models import ParkingSlot, SlotStatus, Vehicle, VehicleStatus

OUT_OF_SERVICE = (SlotStatus.DISABLED, SlotStatus.MAINTENANCE)

def _utilization(count: int, capacity: int) -> float:
    return count / capacity * 100.0

def _with_count(slot: ParkingSlot, count: int, status: SlotStatus, **extra) -> ParkingSlot:
    count = max(0, min(slot.capacity, count))
    if status not in OUT_OF_SERVICE and count == 0:
        status = SlotStatus.AVAILABLE
    update = {"occupiedCount": count, "status": status, "utilizationRate": _utilization(count, slot.capacity)}
    update.update(extra)
    return slot.model_copy(update=update)

def is_in_service(slot: ParkingSlot) -> bool:
    return slot.status not in OUT_OF_SERVICE

def has_free_capacity(slot: ParkingSlot) -> bool:
    return is_in_service(slot) and slot.occupiedCount < slot.capacity

def occupy_slot(slot: ParkingSlot, now: datetime, vehicle_id: Optional[str] = None) -> ParkingSlot:
    if not has_free_capacity(slot):
        return slot
    return _with_count(slot, slot.occupiedCount + 1, SlotStatus.OCCUPIED,
                       lastUsed=now, vehicleId=vehicle_id or slot.vehicleId)

def reserve_slot(slot: ParkingSlot) -> ParkingSlot:
    if not has_free_capacity(slot):
        return slot
    return _with_count(slot, slot.occupiedCount + 1, SlotStatus.RESERVED)

def confirm_reservation(slot: ParkingSlot, now: datetime) -> ParkingSlot:
    if slot.status != SlotStatus.RESERVED:
        return slot
    return _with_count(slot, slot.occupiedCount, SlotStatus.OCCUPIED, lastUsed=now)

def release_slot(slot: ParkingSlot) -> ParkingSlot:
    if not is_in_service(slot) or slot.occupiedCount == 0:
        return slot
    remaining = slot.occupiedCount - 1
    return _with_count(slot, remaining, SlotStatus.OCCUPIED,
                       vehicleId=slot.vehicleId if remaining else None)

def clear_slot(slot: ParkingSlot, status: SlotStatus = SlotStatus.AVAILABLE) -> ParkingSlot:
    return _with_count(slot, 0, status, vehicleId=None)

def set_slot_status(slot: ParkingSlot, status: SlotStatus, now: datetime) -> ParkingSlot:
    if status == SlotStatus.OCCUPIED:
        return occupy_slot(slot, now)
    if status == SlotStatus.RESERVED:
        return reserve_slot(slot)
    return clear_slot(slot, status)

def with_vehicle_status(vehicle: Vehicle, status: VehicleStatus, now: datetime, **extra) -> Vehicle:
    update = {"status": status, "lastUpdate": now}
    update.update(extra)
    return vehicle.model_copy(update=update)

def adjust_battery(vehicle: Vehicle, delta: float) -> Vehicle:
    return vehicle.model_copy(update={"battery": max(0.0, min(100.0, vehicle.battery + delta))})
