from pydantic import BaseModel, Field, field_validator
from typing import Optional, Dict
from datetime import datetime
from enum import Enum

class AppointmentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

# Statuses in which an appointment still occupies its (date, timeSlot)
ACTIVE_STATUSES = [AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED]

class CounselorType(str, Enum):
    ACADEMIC = "academic"
    CAREER = "career"
    MENTAL_HEALTH = "mental_health"
    FAMILY = "family"
    CRISIS = "crisis"
    GENDER_SEXUALITY = "gender_sexuality"

COUNSELOR_TYPE_LABELS = {
    CounselorType.ACADEMIC: "Academic Counselor",
    CounselorType.CAREER: "Career Counselor",
    CounselorType.MENTAL_HEALTH: "Mental Health Counselor",
    CounselorType.FAMILY: "Family Counselor",
    CounselorType.CRISIS: "Crisis Counselor",
    CounselorType.GENDER_SEXUALITY: "Gender & Sexuality Counselor",
}

class CancelledBy(str, Enum):
    STUDENT = "student"
    GUIDANCE = "guidance"

class AppointmentCreate(BaseModel):
    counselorType: CounselorType
    date: str  # YYYY-MM-DD
    timeSlot: str
    purpose: str = Field(..., min_length=1)
    
    @field_validator("timeSlot", "purpose")
    @classmethod
    def strip_text(cls, value: str) -> str:
        return value.strip()

class AppointmentCancel(BaseModel):
    reason: str = ""

class AppointmentReject(BaseModel):
    reason: Optional[str] = None

class AppointmentResponse(BaseModel):
    id: str
    studentId: str
    studentName: str
    email: str
    counselorType: CounselorType
    counselorTypeLabel: str
    date: str
    timeSlot: str
    purpose: str
    status: AppointmentStatus
    createdAt: datetime
    updatedAt: Optional[datetime] = None
    cancellationReason: Optional[str] = None
    cancellationBy: Optional[CancelledBy] = None
    rejectionReason: Optional[str] = None
    requiresAcknowledgment: bool = False
    acknowledged: Optional[bool] = None
    acknowledgedAt: Optional[datetime] = None
    
    class Config:
        populate_by_name = True
        json_encoders = {
            datetime: lambda dt: dt.isoformat()
        }

class AppointmentStats(BaseModel):
    total: int
    byStatus: Dict[str, int]
    today: int
