from typing import Dict, Any, List, Optional
from guidance_portal.db.mongodb import db, store_call
from guidance_portal.core.config import settings
from guidance_portal.core.errors import NotFound
from guidance_portal.schemas.appointment import AppointmentStatus, COUNSELOR_TYPE_LABELS, CounselorType
from guidance_portal.schemas.notification import NotificationType, NotificationCreate
from guidance_portal.schemas.user import Capability
from guidance_portal.services.event_stream import publish_notification
from guidance_portal.services.user_service import get_user_by_student_id, list_users_by_capability
from datetime import datetime
from enum import Enum
from bson import ObjectId
from bson.errors import InvalidId
import logging

logger = logging.getLogger(__name__)

class AppointmentEvent(str, Enum):
    SCHEDULED = "scheduled"
    STATUS_CHANGED = "status_changed"
    CANCELLED_BY_STUDENT = "cancelled_by_student"
    REMINDER_DUE = "reminder_due"

STATUS_TITLES = {
    AppointmentStatus.CONFIRMED: "Appointment Confirmed",
    AppointmentStatus.REJECTED: "Appointment Rejected",
    AppointmentStatus.COMPLETED: "Appointment Completed",
    AppointmentStatus.CANCELLED: "Appointment Cancelled",
}

STATUS_MESSAGES = {
    AppointmentStatus.CONFIRMED: "Your appointment on {date} at {timeSlot} has been confirmed.",
    AppointmentStatus.REJECTED: "Your appointment on {date} at {timeSlot} has been rejected. Please book another time slot.",
    AppointmentStatus.COMPLETED: "Your appointment on {date} at {timeSlot} has been marked as completed.",
    AppointmentStatus.CANCELLED: "Your appointment on {date} at {timeSlot} has been cancelled by the guidance office.",
}

def _serialize(notification: Dict[str, Any]) -> Dict[str, Any]:
    notification["id"] = str(notification["_id"])
    return notification

def _object_id(notification_id: str) -> ObjectId:
    try:
        return ObjectId(notification_id)
    except (InvalidId, TypeError):
        raise NotFound("Notification not found", {"notificationId": notification_id})

@store_call
async def create_notification(notification: NotificationCreate) -> Dict[str, Any]:
    """
    Create a new notification
    """
    notification_data = notification.model_dump()
    notification_data["type"] = notification.type.value
    notification_data["unread"] = True
    notification_data["acknowledged"] = False
    notification_data["createdAt"] = datetime.utcnow()
    
    result = await db.db.notifications.insert_one(notification_data)
    
    created_notification = await db.db.notifications.find_one({"_id": result.inserted_id})
    created_notification = _serialize(created_notification)
    
    publish_notification(created_notification)
    
    return created_notification

@store_call
async def get_notifications(
    user_id: str,
    unread_only: bool = False,
    skip: int = 0,
    limit: int = 20
) -> List[Dict[str, Any]]:
    """
    Get notifications for a user, newest first
    """
    query = {"userId": user_id}
    
    if unread_only:
        query["unread"] = True
    
    cursor = db.db.notifications.find(query).sort([("createdAt", -1), ("_id", -1)]).skip(skip).limit(limit)
    notifications = await cursor.to_list(length=limit)
    
    return [_serialize(notification) for notification in notifications]

@store_call
async def get_notifications_for_appointment(appointment_id: str) -> List[Dict[str, Any]]:
    cursor = db.db.notifications.find({"appointmentId": appointment_id}).sort("createdAt", 1)
    notifications = await cursor.to_list(length=None)
    return [_serialize(notification) for notification in notifications]

@store_call
async def mark_notification_read(notification_id: str, user_id: str) -> Dict[str, Any]:
    """
    Mark a notification as read
    """
    await db.db.notifications.update_one(
        {"_id": _object_id(notification_id), "userId": user_id},
        {"$set": {"unread": False, "readAt": datetime.utcnow()}}
    )
    
    updated_notification = await db.db.notifications.find_one(
        {"_id": _object_id(notification_id), "userId": user_id}
    )
    if not updated_notification:
        raise NotFound("Notification not found", {"notificationId": notification_id})
    
    return _serialize(updated_notification)

@store_call
async def mark_all_notifications_read(user_id: str) -> int:
    """
    Mark all notifications as read for a user
    """
    result = await db.db.notifications.update_many(
        {"userId": user_id, "unread": True},
        {"$set": {"unread": False, "readAt": datetime.utcnow()}}
    )
    
    return result.modified_count

@store_call
async def get_unread_notification_count(user_id: str) -> int:
    """
    Get unread notification count for a user
    """
    return await db.db.notifications.count_documents({"userId": user_id, "unread": True})

@store_call
async def acknowledge_notification(notification_id: str, user_id: str) -> Dict[str, Any]:
    """
    Acknowledge a notification. Acknowledging twice is a no-op.
    """
    notification = await db.db.notifications.find_one(
        {"_id": _object_id(notification_id), "userId": user_id}
    )
    if not notification:
        raise NotFound("Notification not found", {"notificationId": notification_id})
    
    if not notification.get("acknowledged"):
        now = datetime.utcnow()
        await db.db.notifications.update_one(
            {"_id": notification["_id"]},
            {"$set": {"acknowledged": True, "acknowledgedAt": now, "unread": False}}
        )
        notification.update({"acknowledged": True, "acknowledgedAt": now, "unread": False})
    
    return _serialize(notification)

@store_call
async def acknowledge_appointment_notifications(appointment_id: str, user_id: str) -> int:
    """
    Acknowledge every pending acknowledgment for an appointment addressed to a user
    """
    result = await db.db.notifications.update_many(
        {
            "appointmentId": appointment_id,
            "userId": user_id,
            "requiresAcknowledgment": True,
            "acknowledged": False
        },
        {"$set": {"acknowledged": True, "acknowledgedAt": datetime.utcnow(), "unread": False}}
    )
    return result.modified_count

def _counselor_label(appointment: Dict[str, Any]) -> str:
    try:
        return COUNSELOR_TYPE_LABELS[CounselorType(appointment.get("counselorType"))]
    except ValueError:
        return "Guidance"

def _render(
    event: AppointmentEvent,
    appointment: Dict[str, Any],
    status: Optional[AppointmentStatus],
    reason: Optional[str]
) -> Dict[str, Any]:
    date = appointment.get("date")
    time_slot = appointment.get("timeSlot")
    student_name = appointment.get("studentName") or "A student"
    
    if event == AppointmentEvent.SCHEDULED:
        return {
            "type": NotificationType.APPOINTMENT_SCHEDULED,
            "title": "New Appointment Request",
            "message": f"{student_name} requested a {_counselor_label(appointment)} appointment on {date} at {time_slot}."
        }
    
    if event == AppointmentEvent.STATUS_CHANGED:
        status = AppointmentStatus(status)
        message = STATUS_MESSAGES.get(status, "Your appointment status has been updated to {status}.")
        message = message.format(date=date, timeSlot=time_slot, status=status.value)
        if reason:
            message = f"{message} Reason: {reason}"
        return {
            "type": NotificationType.APPOINTMENT_STATUS,
            "title": STATUS_TITLES.get(status, f"Appointment {status.value.capitalize()}"),
            "message": message
        }
    
    if event == AppointmentEvent.CANCELLED_BY_STUDENT:
        return {
            "type": NotificationType.APPOINTMENT_CANCELLED,
            "title": "Appointment Cancelled by Student",
            "message": f"{student_name} cancelled the appointment on {date} at {time_slot}. Reason: {reason}"
        }
    
    message = (
        f"Your appointment on {date} at {time_slot} starts within "
        f"{settings.REMINDER_LEAD_MINUTES} minutes."
    )
    if appointment.get("purpose"):
        message = f"{message} Purpose: {appointment['purpose']}"
    return {
        "type": NotificationType.APPOINTMENT_REMINDER,
        "title": "Upcoming Appointment",
        "message": message
    }

async def _resolve_recipients(event: AppointmentEvent, appointment: Dict[str, Any]) -> List[str]:
    if event in (AppointmentEvent.SCHEDULED, AppointmentEvent.CANCELLED_BY_STUDENT):
        counselors = await list_users_by_capability(Capability.COUNSELOR)
        return [counselor.uid for counselor in counselors]
    
    student = await get_user_by_student_id(appointment["studentId"])
    if student is None:
        logger.warning(f"No account found for studentId {appointment['studentId']}; notification skipped")
        return []
    return [student.uid]

async def notify(
    event: AppointmentEvent,
    appointment: Dict[str, Any],
    status: Optional[AppointmentStatus] = None,
    reason: Optional[str] = None,
    requires_acknowledgment: bool = False
) -> List[Dict[str, Any]]:
    """
    Fan an appointment event out to its recipients, one notification each.

    Failures are logged and swallowed: the triggering transition has already
    been committed and must not be reported as failed. Returns the
    notifications that were created.
    """
    if event == AppointmentEvent.CANCELLED_BY_STUDENT:
        requires_acknowledgment = True
    
    try:
        content = _render(event, appointment, status, reason)
        recipients = await _resolve_recipients(event, appointment)
    except Exception as e:
        logger.error(f"Error preparing {event.value} notification for appointment {appointment.get('id')}: {e}")
        return []
    
    created_notifications = []
    for recipient_id in recipients:
        try:
            notification = NotificationCreate(
                userId=recipient_id,
                appointmentId=appointment.get("id"),
                requiresAcknowledgment=requires_acknowledgment,
                **content
            )
            created_notifications.append(await create_notification(notification))
        except Exception as e:
            logger.error(f"Error creating {event.value} notification for {recipient_id}: {e}")
    
    logger.info(
        f"Sent {len(created_notifications)}/{len(recipients)} {event.value} notification(s) "
        f"for appointment {appointment.get('id')}"
    )
    return created_notifications
