from typing import Dict, Any, List, Set
from guidance_portal.db.mongodb import db, store_call
from guidance_portal.core.errors import SlotUnavailable
from guidance_portal.schemas.appointment import ACTIVE_STATUSES
from guidance_portal.services.time_slot_service import get_day, validate_date

@store_call
async def get_booked_slots(day: str) -> Set[str]:
    """
    Labels held by a pending or confirmed appointment on a date
    """
    cursor = db.db.appointments.find(
        {"date": day, "status": {"$in": [s.value for s in ACTIVE_STATUSES]}},
        {"timeSlot": 1}
    )
    appointments = await cursor.to_list(length=None)
    return {appointment["timeSlot"] for appointment in appointments}

async def list_all_slots(day: str) -> List[Dict[str, Any]]:
    """
    Every configured slot for a date with its administrative and booked state
    """
    day = validate_date(day)
    time_slot_day = await get_day(day)
    booked = await get_booked_slots(day)
    
    return [
        {
            "label": slot["label"],
            "available": slot["available"],
            "booked": slot["label"] in booked
        }
        for slot in time_slot_day["slots"]
    ]

async def list_available_slots(day: str) -> List[str]:
    """
    Labels a student can book: available and not booked
    """
    slots = await list_all_slots(day)
    return [slot["label"] for slot in slots if slot["available"] and not slot["booked"]]

@store_call
async def check_slot(day: str, label: str) -> None:
    """
    Raise SlotUnavailable unless the slot exists, is not blocked and is not occupied
    """
    day = validate_date(day)
    time_slot_day = await get_day(day)
    
    slot = next((s for s in time_slot_day["slots"] if s["label"] == label), None)
    if slot is None:
        raise SlotUnavailable(day, label, reason="unknown")
    if not slot["available"]:
        raise SlotUnavailable(day, label, reason="blocked")
    
    occupant = await db.db.appointments.find_one(
        {"date": day, "timeSlot": label, "status": {"$in": [s.value for s in ACTIVE_STATUSES]}}
    )
    if occupant:
        raise SlotUnavailable(day, label, reason="booked")

async def is_slot_free(day: str, label: str) -> bool:
    try:
        await check_slot(day, label)
    except SlotUnavailable:
        return False
    return True
