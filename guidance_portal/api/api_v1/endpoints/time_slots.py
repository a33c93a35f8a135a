from fastapi import APIRouter, Depends
from typing import List
from guidance_portal.core.auth import get_current_user
from guidance_portal.schemas.time_slot import (
    TimeSlotDay, TimeSlotDayUpdate, BulkBlockRequest, BulkBlockResponse, SlotAvailability
)
from guidance_portal.schemas.user import Account
from guidance_portal.services.time_slot_service import get_day, set_day, bulk_block
from guidance_portal.services.availability_service import list_all_slots, list_available_slots

router = APIRouter()

@router.post("/bulk-block", response_model=BulkBlockResponse)
async def bulk_block_month(
    request: BulkBlockRequest,
    current_user: Account = Depends(get_current_user)
):
    """
    Block the given slots (or every slot) on every day of a month.
    Each day is reset to the default template first.
    """
    return await bulk_block(request.month, current_user, request.specificLabels)

@router.get("/{date}", response_model=TimeSlotDay)
async def get_time_slot_day(date: str, current_user: Account = Depends(get_current_user)):
    """
    Get the slot configuration for a date
    """
    return await get_day(date)

@router.put("/{date}", response_model=TimeSlotDay)
async def update_time_slot_day(
    date: str,
    day_update: TimeSlotDayUpdate,
    current_user: Account = Depends(get_current_user)
):
    """
    Replace the slot configuration for a date (counselors only)
    """
    return await set_day(date, day_update.slots, current_user)

@router.get("/{date}/all", response_model=List[SlotAvailability])
async def get_all_slots(date: str, current_user: Account = Depends(get_current_user)):
    """
    Every slot for a date with its blocked and booked state
    """
    return await list_all_slots(date)

@router.get("/{date}/available", response_model=List[str])
async def get_available_slots(date: str, current_user: Account = Depends(get_current_user)):
    """
    Slot labels a student can book on a date
    """
    return await list_available_slots(date)
