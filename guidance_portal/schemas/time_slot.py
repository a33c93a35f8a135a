from pydantic import BaseModel, field_validator
from typing import Optional, List
from datetime import datetime
import re

MONTH_PATTERN = re.compile(r"^\d{4}-\d{2}$")

class TimeSlot(BaseModel):
    label: str
    available: bool = True

class TimeSlotDay(BaseModel):
    date: str
    slots: List[TimeSlot]
    updatedAt: Optional[datetime] = None
    isDefault: bool = False

class TimeSlotDayUpdate(BaseModel):
    slots: List[TimeSlot]
    
    @field_validator("slots")
    @classmethod
    def validate_unique_labels(cls, value: List[TimeSlot]) -> List[TimeSlot]:
        labels = [slot.label for slot in value]
        if len(labels) != len(set(labels)):
            raise ValueError("Time slot labels must be unique within a day")
        return value

class BulkBlockRequest(BaseModel):
    month: str  # YYYY-MM
    specificLabels: Optional[List[str]] = None
    
    @field_validator("month")
    @classmethod
    def validate_month(cls, value: str) -> str:
        value = value.strip()
        if not MONTH_PATTERN.match(value):
            raise ValueError("Month must be formatted as YYYY-MM")
        return value

class BulkBlockResponse(BaseModel):
    month: str
    daysUpdated: int
    blockedLabels: List[str]

class SlotAvailability(BaseModel):
    label: str
    available: bool
    booked: bool
