from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from typing import List, Optional
from guidance_portal.core.auth import get_current_user, get_current_counselor, ensure_owner, ensure_student
from guidance_portal.schemas.appointment import (
    AppointmentCreate, AppointmentResponse, AppointmentStatus, AppointmentCancel,
    AppointmentReject, AppointmentStats
)
from guidance_portal.schemas.user import Account
from guidance_portal.services.appointment_service import (
    create_appointment, get_appointment_by_id, approve_appointment, reject_appointment,
    complete_appointment, cancel_appointment, acknowledge_cancellation,
    list_appointments, get_student_appointments, get_appointment_stats
)
from guidance_portal.services.event_stream import appointment_events
from guidance_portal.utils.sse import event_source
from guidance_portal.services.reminder_service import check_upcoming_appointments, local_now

router = APIRouter()

@router.post("/", response_model=AppointmentResponse)
async def book_appointment(
    appointment_in: AppointmentCreate,
    current_user: Account = Depends(get_current_user)
):
    """
    Book an appointment as a student
    """
    return await create_appointment(appointment_in, current_user)

@router.get("/", response_model=List[AppointmentResponse])
async def get_all_appointments(
    status: Optional[AppointmentStatus] = None,
    date: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    current_user: Account = Depends(get_current_counselor)
):
    """
    Get all appointments (counselors only)
    """
    return await list_appointments(status=status, date=date, skip=skip, limit=limit)

@router.get("/me", response_model=List[AppointmentResponse])
async def get_my_appointments(
    status: Optional[AppointmentStatus] = None,
    current_user: Account = Depends(get_current_user)
):
    """
    Get the current student's appointments
    """
    ensure_student(current_user, "view their appointments")
    return await get_student_appointments(current_user.studentId, status=status)

@router.get("/stats", response_model=AppointmentStats)
async def get_dashboard_stats(current_user: Account = Depends(get_current_counselor)):
    """
    Appointment counts for the guidance dashboard
    """
    return await get_appointment_stats(local_now().date().isoformat())

@router.get("/stream")
async def stream_appointment_changes(current_user: Account = Depends(get_current_user)):
    """
    Live appointment changes: every appointment for counselors, own appointments for students
    """
    if current_user.is_counselor:
        subscription = appointment_events.subscribe()
    else:
        student_id = current_user.studentId
        subscription = appointment_events.subscribe(lambda event: event.studentId == student_id)
    
    return StreamingResponse(event_source(subscription), media_type="text/event-stream")

@router.post("/reminders/check", response_model=List[str])
async def check_my_reminders(current_user: Account = Depends(get_current_user)):
    """
    Scan the current student's confirmed appointments for reminders now
    """
    ensure_student(current_user, "check appointment reminders")
    return await check_upcoming_appointments(current_user.studentId)

@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: str,
    current_user: Account = Depends(get_current_user)
):
    """
    Get appointment details (owner or counselor)
    """
    appointment = await get_appointment_by_id(appointment_id)
    if not current_user.is_counselor:
        ensure_owner(current_user, appointment, "view")
    return appointment

@router.post("/{appointment_id}/approve", response_model=AppointmentResponse)
async def approve(appointment_id: str, current_user: Account = Depends(get_current_user)):
    return await approve_appointment(appointment_id, current_user)

@router.post("/{appointment_id}/reject", response_model=AppointmentResponse)
async def reject(
    appointment_id: str,
    rejection: Optional[AppointmentReject] = None,
    current_user: Account = Depends(get_current_user)
):
    reason = rejection.reason if rejection else None
    return await reject_appointment(appointment_id, current_user, reason)

@router.post("/{appointment_id}/complete", response_model=AppointmentResponse)
async def complete(appointment_id: str, current_user: Account = Depends(get_current_user)):
    return await complete_appointment(appointment_id, current_user)

@router.post("/{appointment_id}/cancel", response_model=AppointmentResponse)
async def cancel(
    appointment_id: str,
    cancellation: AppointmentCancel,
    current_user: Account = Depends(get_current_user)
):
    """
    Cancel an appointment. Counselors cancel for the guidance office,
    students cancel their own. A reason is required.
    """
    return await cancel_appointment(appointment_id, cancellation.reason, current_user)

@router.post("/{appointment_id}/acknowledge", response_model=AppointmentResponse)
async def acknowledge(appointment_id: str, current_user: Account = Depends(get_current_user)):
    """
    Acknowledge a cancellation made by the guidance office
    """
    return await acknowledge_cancellation(appointment_id, current_user)
