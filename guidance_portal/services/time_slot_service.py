"""
Per-day configuration of bookable time slots.

Documents live in ``availableTimeSlots`` keyed by the ISO date string. A date
with no document uses the default template from settings with every slot
available.
"""
from typing import Dict, Any, List, Optional
from guidance_portal.db.mongodb import db, store_call
from guidance_portal.core.auth import ensure_counselor
from guidance_portal.core.config import settings
from guidance_portal.core.errors import ValidationFailure
from guidance_portal.schemas.time_slot import TimeSlot
from guidance_portal.schemas.user import Account
from datetime import date, datetime, time
import calendar
import logging

logger = logging.getLogger(__name__)

TIME_SLOTS_COLLECTION = "availableTimeSlots"
UNPARSED_SLOT_MINUTES = 24 * 60

def default_slots() -> List[Dict[str, Any]]:
    return [{"label": label, "available": True} for label in settings.DEFAULT_TIME_SLOTS]

def validate_date(value: str) -> str:
    """Return the canonical YYYY-MM-DD form or raise ValidationFailure."""
    try:
        return date.fromisoformat(value.strip()).isoformat()
    except (ValueError, AttributeError):
        raise ValidationFailure(f"Invalid date '{value}'. Expected YYYY-MM-DD", {"field": "date"})

def dates_in_month(month: str) -> List[str]:
    try:
        year, month_number = (int(part) for part in month.split("-"))
        _, days = calendar.monthrange(year, month_number)
    except (ValueError, calendar.IllegalMonthError):
        raise ValidationFailure(f"Invalid month '{month}'. Expected YYYY-MM", {"field": "month"})
    return [date(year, month_number, day).isoformat() for day in range(1, days + 1)]


def parse_slot_start(label: str) -> Optional[time]:
    """Start time of a label such as "10:00 AM" or "10:00 AM - 11:00 AM"."""
    start = label.split(" - ")[0].strip()
    try:
        return datetime.strptime(start, "%I:%M %p").time()
    except ValueError:
        return None

def slot_minutes(label: str) -> int:
    """Minutes after midnight at which a label starts. Unparsable labels sort last."""
    start = parse_slot_start(label)
    if start is None:
        return UNPARSED_SLOT_MINUTES
    return start.hour * 60 + start.minute

@store_call
async def get_day(day: str) -> Dict[str, Any]:
    """
    Get the slot configuration for a date, falling back to the default template
    """
    day = validate_date(day)
    document = await db.db[TIME_SLOTS_COLLECTION].find_one({"_id": day})
    
    if not document:
        return {"date": day, "slots": default_slots(), "updatedAt": None, "isDefault": True}
    
    return {
        "date": day,
        "slots": document.get("slots", []),
        "updatedAt": document.get("updatedAt"),
        "isDefault": False
    }

@store_call
async def set_day(day: str, slots: List[TimeSlot], acting_user: Account) -> Dict[str, Any]:
    """
    Overwrite the whole slot sequence for a date
    """
    ensure_counselor(acting_user, "edit time slots")
    day = validate_date(day)
    
    labels = [slot.label for slot in slots]
    if len(labels) != len(set(labels)):
        raise ValidationFailure("Time slot labels must be unique within a day", {"field": "slots"})
    
    document = {
        "date": day,
        "slots": [slot.model_dump() for slot in slots],
        "updatedAt": datetime.utcnow(),
        "updatedBy": acting_user.uid
    }
    await db.db[TIME_SLOTS_COLLECTION].replace_one({"_id": day}, document, upsert=True)
    
    return await get_day(day)

@store_call
async def bulk_block(
    month: str,
    acting_user: Account,
    specific_labels: Optional[List[str]] = None
) -> Dict[str, Any]:
    """
    Reset every day of a month to the default template, blocking the given labels.

    With no labels every slot of every day is blocked. Existing custom
    configuration for those days is replaced, not merged.
    """
    ensure_counselor(acting_user, "block time slots")
    days = dates_in_month(month)
    
    blocked = list(specific_labels) if specific_labels else list(settings.DEFAULT_TIME_SLOTS)
    unknown = [label for label in blocked if label not in settings.DEFAULT_TIME_SLOTS]
    if unknown:
        raise ValidationFailure(
            f"Unknown time slot labels: {', '.join(unknown)}",
            {"field": "specificLabels", "unknownLabels": unknown}
        )
    
    now = datetime.utcnow()
    for day in days:
        slots = [
            {"label": slot["label"], "available": slot["label"] not in blocked}
            for slot in default_slots()
        ]
        await db.db[TIME_SLOTS_COLLECTION].replace_one(
            {"_id": day},
            {"date": day, "slots": slots, "updatedAt": now, "updatedBy": acting_user.uid},
            upsert=True
        )
    
    logger.info(f"Blocked {len(blocked)} slot(s) on {len(days)} days in {month}")
    return {"month": month, "daysUpdated": len(days), "blockedLabels": blocked}
