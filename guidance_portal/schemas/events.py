from pydantic import BaseModel
from typing import Optional
from datetime import datetime

class AppointmentChanged(BaseModel):
    event: str  # created, approved, rejected, completed, cancelled, acknowledged
    appointmentId: str
    studentId: str
    date: str
    timeSlot: str
    status: str
    occurredAt: datetime

class NotificationCreated(BaseModel):
    event: str = "notification"
    notificationId: str
    userId: str
    type: str
    title: str
    message: str
    appointmentId: Optional[str] = None
    occurredAt: datetime
