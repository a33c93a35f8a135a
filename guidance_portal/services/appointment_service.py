from typing import Dict, Any, List, Optional
from guidance_portal.db.mongodb import db, store_call
from guidance_portal.core.auth import ensure_counselor, ensure_owner, ensure_student
from guidance_portal.core.errors import InvalidTransition, NotFound, SlotUnavailable, ValidationFailure
from guidance_portal.schemas.appointment import (
    AppointmentCreate, AppointmentStatus, ACTIVE_STATUSES, CancelledBy,
    COUNSELOR_TYPE_LABELS, CounselorType
)
from guidance_portal.schemas.user import Account
from guidance_portal.services.availability_service import check_slot
from guidance_portal.services.event_stream import publish_appointment_change
from guidance_portal.services.notification_service import (
    AppointmentEvent, acknowledge_appointment_notifications, notify
)
from guidance_portal.services.time_slot_service import slot_minutes, validate_date
from datetime import datetime
from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError
import logging

logger = logging.getLogger(__name__)

SLOT_ORDER = [("date", 1), ("slotMinutes", 1), ("createdAt", 1)]

def _serialize(appointment: Dict[str, Any]) -> Dict[str, Any]:
    appointment["id"] = str(appointment["_id"])
    try:
        appointment["counselorTypeLabel"] = COUNSELOR_TYPE_LABELS[CounselorType(appointment.get("counselorType"))]
    except ValueError:
        appointment["counselorTypeLabel"] = appointment.get("counselorType") or "Unknown"
    return appointment

def _object_id(appointment_id: str) -> ObjectId:
    try:
        return ObjectId(appointment_id)
    except (InvalidId, TypeError):
        raise NotFound("Appointment not found", {"appointmentId": appointment_id})

def _require_reason(reason: Optional[str]) -> str:
    if reason is None or not reason.strip():
        raise ValidationFailure("A cancellation reason is required", {"field": "reason"})
    return reason.strip()

@store_call
async def get_appointment_by_id(appointment_id: str) -> Dict[str, Any]:
    """
    Get an appointment by ID
    """
    appointment = await db.db.appointments.find_one({"_id": _object_id(appointment_id)})
    if not appointment:
        raise NotFound("Appointment not found", {"appointmentId": appointment_id})
    return _serialize(appointment)

@store_call
async def create_appointment(appointment_in: AppointmentCreate, acting_user: Account) -> Dict[str, Any]:
    """
    Book a slot for the acting student.

    The pre-check gives a precise reason (blocked, booked, unknown); the unique
    partial index on (date, timeSlot) over slot-holding appointments is what
    guarantees a single occupant when bookings race.
    """
    ensure_student(acting_user, "book appointments")
    day = validate_date(appointment_in.date)
    
    await check_slot(day, appointment_in.timeSlot)
    
    now = datetime.utcnow()
    appointment_data = {
        "studentId": acting_user.studentId,
        "studentName": acting_user.displayName,
        "email": acting_user.email,
        "counselorType": appointment_in.counselorType.value,
        "date": day,
        "timeSlot": appointment_in.timeSlot,
        "slotMinutes": slot_minutes(appointment_in.timeSlot),
        "purpose": appointment_in.purpose,
        "status": AppointmentStatus.PENDING.value,
        "holdsSlot": True,
        "createdAt": now,
        "updatedAt": now
    }
    
    try:
        result = await db.db.appointments.insert_one(appointment_data)
    except DuplicateKeyError:
        logger.info(f"Lost booking race for {day} {appointment_in.timeSlot}")
        raise SlotUnavailable(day, appointment_in.timeSlot, reason="booked")
    
    created_appointment = await db.db.appointments.find_one({"_id": result.inserted_id})
    created_appointment = _serialize(created_appointment)
    logger.info(f"Appointment {created_appointment['id']} booked for {day} {appointment_in.timeSlot}")
    
    publish_appointment_change("created", created_appointment)
    await notify(AppointmentEvent.SCHEDULED, created_appointment)
    
    return created_appointment

async def _transition(
    appointment: Dict[str, Any],
    allowed: List[AppointmentStatus],
    requested: str,
    update_data: Dict[str, Any],
    event: str
) -> Dict[str, Any]:
    allowed_values = [s.value for s in allowed]
    if appointment["status"] not in allowed_values:
        raise InvalidTransition(appointment["status"], requested)
    
    update_data["updatedAt"] = datetime.utcnow()
    
    # Compare-and-swap on the current status
    updated_appointment = await db.db.appointments.find_one_and_update(
        {"_id": appointment["_id"], "status": {"$in": allowed_values}},
        {"$set": update_data},
        return_document=ReturnDocument.AFTER
    )
    
    if updated_appointment is None:
        current = await db.db.appointments.find_one({"_id": appointment["_id"]})
        if current is None:
            raise NotFound("Appointment not found", {"appointmentId": appointment["id"]})
        raise InvalidTransition(current["status"], requested)
    
    updated_appointment = _serialize(updated_appointment)
    logger.info(
        f"Appointment {updated_appointment['id']}: {appointment['status']} -> {updated_appointment['status']}"
    )
    publish_appointment_change(event, updated_appointment)
    return updated_appointment

@store_call
async def approve_appointment(appointment_id: str, acting_user: Account) -> Dict[str, Any]:
    ensure_counselor(acting_user, "approve appointments")
    appointment = await get_appointment_by_id(appointment_id)
    
    updated_appointment = await _transition(
        appointment,
        [AppointmentStatus.PENDING],
        "approve",
        {"status": AppointmentStatus.CONFIRMED.value, "holdsSlot": True, "reviewedBy": acting_user.uid},
        "approved"
    )
    
    await notify(AppointmentEvent.STATUS_CHANGED, updated_appointment, status=AppointmentStatus.CONFIRMED)
    return updated_appointment

@store_call
async def reject_appointment(
    appointment_id: str,
    acting_user: Account,
    reason: Optional[str] = None
) -> Dict[str, Any]:
    ensure_counselor(acting_user, "reject appointments")
    appointment = await get_appointment_by_id(appointment_id)
    
    reason = reason.strip() if reason else None
    update_data = {"status": AppointmentStatus.REJECTED.value, "holdsSlot": False, "reviewedBy": acting_user.uid}
    if reason:
        update_data["rejectionReason"] = reason
    
    updated_appointment = await _transition(
        appointment, [AppointmentStatus.PENDING], "reject", update_data, "rejected"
    )
    
    await notify(
        AppointmentEvent.STATUS_CHANGED, updated_appointment,
        status=AppointmentStatus.REJECTED, reason=reason
    )
    return updated_appointment

@store_call
async def complete_appointment(appointment_id: str, acting_user: Account) -> Dict[str, Any]:
    ensure_counselor(acting_user, "complete appointments")
    appointment = await get_appointment_by_id(appointment_id)
    
    updated_appointment = await _transition(
        appointment,
        [AppointmentStatus.CONFIRMED],
        "complete",
        {"status": AppointmentStatus.COMPLETED.value, "holdsSlot": False},
        "completed"
    )
    
    await notify(AppointmentEvent.STATUS_CHANGED, updated_appointment, status=AppointmentStatus.COMPLETED)
    return updated_appointment

@store_call
async def cancel_by_student(appointment_id: str, reason: str, acting_user: Account) -> Dict[str, Any]:
    """
    Cancel a pending or confirmed appointment on behalf of its student
    """
    reason = _require_reason(reason)
    appointment = await get_appointment_by_id(appointment_id)
    ensure_owner(acting_user, appointment, "cancel")
    
    updated_appointment = await _transition(
        appointment,
        ACTIVE_STATUSES,
        "cancel",
        {
            "status": AppointmentStatus.CANCELLED.value,
            "holdsSlot": False,
            "cancellationReason": reason,
            "cancellationBy": CancelledBy.STUDENT.value,
            "acknowledged": False,
            "requiresAcknowledgment": False
        },
        "cancelled"
    )
    
    await notify(AppointmentEvent.CANCELLED_BY_STUDENT, updated_appointment, reason=reason)
    return updated_appointment

@store_call
async def cancel_by_guidance(appointment_id: str, reason: str, acting_user: Account) -> Dict[str, Any]:
    """
    Cancel a pending or confirmed appointment from the guidance office.
    The student has to acknowledge the cancellation.
    """
    reason = _require_reason(reason)
    ensure_counselor(acting_user, "cancel appointments for students")
    appointment = await get_appointment_by_id(appointment_id)
    
    updated_appointment = await _transition(
        appointment,
        ACTIVE_STATUSES,
        "cancel",
        {
            "status": AppointmentStatus.CANCELLED.value,
            "holdsSlot": False,
            "cancellationReason": reason,
            "cancellationBy": CancelledBy.GUIDANCE.value,
            "cancelledByUid": acting_user.uid,
            "acknowledged": False,
            "requiresAcknowledgment": True
        },
        "cancelled"
    )
    
    await notify(
        AppointmentEvent.STATUS_CHANGED, updated_appointment,
        status=AppointmentStatus.CANCELLED, reason=reason, requires_acknowledgment=True
    )
    return updated_appointment

async def cancel_appointment(appointment_id: str, reason: str, acting_user: Account) -> Dict[str, Any]:
    """
    Cancel as whichever side the acting user is on
    """
    if acting_user.is_counselor:
        return await cancel_by_guidance(appointment_id, reason, acting_user)
    return await cancel_by_student(appointment_id, reason, acting_user)

@store_call
async def acknowledge_cancellation(appointment_id: str, acting_user: Account) -> Dict[str, Any]:
    """
    Student acknowledges a guidance cancellation. A second call is a no-op.
    """
    appointment = await get_appointment_by_id(appointment_id)
    ensure_owner(acting_user, appointment, "acknowledge")
    
    if (appointment["status"] != AppointmentStatus.CANCELLED.value
            or appointment.get("cancellationBy") != CancelledBy.GUIDANCE.value):
        raise InvalidTransition(
            appointment["status"],
            "acknowledge",
            "Only appointments cancelled by the guidance office can be acknowledged"
        )
    
    if not appointment.get("acknowledged"):
        updated_appointment = await db.db.appointments.find_one_and_update(
            {
                "_id": appointment["_id"],
                "status": AppointmentStatus.CANCELLED.value,
                "cancellationBy": CancelledBy.GUIDANCE.value,
                "acknowledged": False
            },
            {"$set": {"acknowledged": True, "acknowledgedAt": datetime.utcnow()}},
            return_document=ReturnDocument.AFTER
        )
        if updated_appointment is not None:
            appointment = _serialize(updated_appointment)
            publish_appointment_change("acknowledged", appointment)
        else:
            appointment = await get_appointment_by_id(appointment_id)
    
    await acknowledge_appointment_notifications(appointment["id"], acting_user.uid)
    return appointment

@store_call
async def list_appointments(
    status: Optional[AppointmentStatus] = None,
    date: Optional[str] = None,
    skip: int = 0,
    limit: int = 50
) -> List[Dict[str, Any]]:
    """
    Get all appointments ordered by date and slot time
    """
    query = {}
    
    if status:
        query["status"] = status.value
    if date:
        query["date"] = validate_date(date)
    
    cursor = db.db.appointments.find(query).sort(SLOT_ORDER).skip(skip).limit(limit)
    appointments = await cursor.to_list(length=limit)
    
    return [_serialize(appointment) for appointment in appointments]

@store_call
async def get_student_appointments(
    student_id: str,
    status: Optional[AppointmentStatus] = None
) -> List[Dict[str, Any]]:
    """
    Get every appointment for a student ordered by date and slot time
    """
    query = {"studentId": student_id}
    
    if status:
        query["status"] = status.value
    
    cursor = db.db.appointments.find(query).sort(SLOT_ORDER)
    appointments = await cursor.to_list(length=None)
    
    return [_serialize(appointment) for appointment in appointments]

@store_call
async def get_appointment_stats(today: str) -> Dict[str, Any]:
    """
    Raw counts for the guidance dashboard
    """
    by_status = {}
    for status in AppointmentStatus:
        by_status[status.value] = await db.db.appointments.count_documents({"status": status.value})
    
    today_count = await db.db.appointments.count_documents({"date": validate_date(today)})
    
    return {"total": sum(by_status.values()), "byStatus": by_status, "today": today_count}
