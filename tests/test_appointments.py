import asyncio

import pytest
from pymongo.errors import DuplicateKeyError

from guidance_portal.core.config import settings
from guidance_portal.core.errors import (
    InvalidTransition, NotFound, PermissionDenied, SlotUnavailable, ValidationFailure
)
from guidance_portal.schemas.appointment import AppointmentCreate, CounselorType
from guidance_portal.schemas.time_slot import TimeSlot
from guidance_portal.schemas.user import Capability
from guidance_portal.services import appointment_service, notification_service
from guidance_portal.services.appointment_service import (
    acknowledge_cancellation, approve_appointment, cancel_appointment, cancel_by_guidance,
    cancel_by_student, complete_appointment, create_appointment, get_appointment_by_id,
    get_appointment_stats, get_student_appointments, list_appointments, reject_appointment
)
from guidance_portal.services.availability_service import list_available_slots
from guidance_portal.services.notification_service import (
    get_notifications, get_notifications_for_appointment
)
from guidance_portal.services.time_slot_service import set_day
from guidance_portal.services.user_service import create_user


def booking(time_slot="10:00 AM", date="2024-03-04", counselor_type=CounselorType.MENTAL_HEALTH):
    return AppointmentCreate(
        counselorType=counselor_type, date=date, timeSlot=time_slot, purpose="Feeling overwhelmed"
    )


async def test_create_appointment_is_pending_and_notifies_every_counselor(student, counselors):
    appointment = await create_appointment(booking(), student)

    assert appointment["status"] == "pending"
    assert appointment["studentId"] == "2021-00123"
    assert appointment["studentName"] == "Ana Reyes"
    assert appointment["email"] == "ana.reyes@school.edu"
    assert appointment["counselorTypeLabel"] == "Mental Health Counselor"
    assert appointment["createdAt"] is not None

    notifications = await get_notifications_for_appointment(appointment["id"])
    assert sorted(n["userId"] for n in notifications) == sorted(c.uid for c in counselors)
    assert {n["type"] for n in notifications} == {"appointment_scheduled"}
    assert all(n["unread"] for n in notifications)


async def test_second_booking_for_same_slot_fails(student, other_student):
    await create_appointment(booking(), student)

    with pytest.raises(SlotUnavailable) as exc_info:
        await create_appointment(booking(), other_student)

    assert exc_info.value.details["reason"] == "booked"


async def test_concurrent_bookings_only_one_succeeds():
    students = [
        await create_user(f"student{i}@school.edu", f"Student {i}", [Capability.STUDENT], student_id=f"2022-{i:05d}")
        for i in range(6)
    ]

    results = await asyncio.gather(
        *(create_appointment(booking(), s) for s in students), return_exceptions=True
    )

    successes = [r for r in results if isinstance(r, dict)]
    failures = [r for r in results if isinstance(r, SlotUnavailable)]
    assert len(successes) == 1
    assert len(failures) == 5


async def test_unique_slot_index_enforces_single_active_occupant(mongo):
    document = {"date": "2024-03-04", "timeSlot": "10:00 AM", "status": "pending", "holdsSlot": True}
    await mongo.appointments.insert_one(dict(document))

    with pytest.raises(DuplicateKeyError):
        await mongo.appointments.insert_one(dict(document))

    await mongo.appointments.insert_one({**document, "status": "cancelled", "holdsSlot": False})


async def test_booking_race_past_precheck_reports_slot_unavailable(monkeypatch, student, other_student):
    async def always_free(day, label):
        return None

    monkeypatch.setattr(appointment_service, "check_slot", always_free)
    await create_appointment(booking(), student)

    with pytest.raises(SlotUnavailable):
        await create_appointment(booking(), other_student)


async def test_booking_blocked_slot_fails(student, counselor):
    slots = [TimeSlot(label=label, available=label != "10:00 AM") for label in settings.DEFAULT_TIME_SLOTS]
    await set_day("2024-03-04", slots, counselor)

    with pytest.raises(SlotUnavailable) as exc_info:
        await create_appointment(booking(), student)

    assert exc_info.value.details["reason"] == "blocked"


async def test_booking_unknown_slot_fails(student):
    with pytest.raises(SlotUnavailable):
        await create_appointment(booking(time_slot="7:00 PM"), student)


async def test_counselor_cannot_book(counselor):
    with pytest.raises(PermissionDenied):
        await create_appointment(booking(), counselor)


async def test_approve_notifies_student(student, counselor):
    appointment = await create_appointment(booking(), student)

    approved = await approve_appointment(appointment["id"], counselor)

    assert approved["status"] == "confirmed"
    student_notifications = await get_notifications(student.uid)
    assert len(student_notifications) == 1
    assert student_notifications[0]["type"] == "appointment_status"
    assert student_notifications[0]["title"] == "Appointment Confirmed"
    assert "confirmed" in student_notifications[0]["message"]


async def test_reject_with_optional_reason(student, counselor):
    appointment = await create_appointment(booking(), student)

    rejected = await reject_appointment(appointment["id"], counselor, "Counselor on leave")

    assert rejected["status"] == "rejected"
    assert rejected["rejectionReason"] == "Counselor on leave"
    [notification] = await get_notifications(student.uid)
    assert "rejected" in notification["message"]
    assert "Counselor on leave" in notification["message"]


async def test_complete_requires_confirmed(student, counselor):
    appointment = await create_appointment(booking(), student)

    with pytest.raises(InvalidTransition) as exc_info:
        await complete_appointment(appointment["id"], counselor)

    assert exc_info.value.details == {"currentStatus": "pending", "requested": "complete"}

    await approve_appointment(appointment["id"], counselor)
    completed = await complete_appointment(appointment["id"], counselor)
    assert completed["status"] == "completed"


async def test_students_cannot_run_guidance_transitions(student):
    appointment = await create_appointment(booking(), student)

    for transition in (approve_appointment, reject_appointment, complete_appointment):
        with pytest.raises(PermissionDenied):
            await transition(appointment["id"], student)

    assert (await get_appointment_by_id(appointment["id"]))["status"] == "pending"


async def _to_terminal(kind, appointment_id, student, counselor):
    if kind == "rejected":
        await reject_appointment(appointment_id, counselor)
    elif kind == "completed":
        await approve_appointment(appointment_id, counselor)
        await complete_appointment(appointment_id, counselor)
    else:
        await cancel_by_student(appointment_id, "conflict", student)


@pytest.mark.parametrize("terminal", ["rejected", "completed", "cancelled"])
async def test_terminal_states_accept_no_transition(terminal, student, counselor):
    appointment = await create_appointment(booking(), student)
    await _to_terminal(terminal, appointment["id"], student, counselor)

    attempts = [
        approve_appointment(appointment["id"], counselor),
        reject_appointment(appointment["id"], counselor),
        complete_appointment(appointment["id"], counselor),
        cancel_by_student(appointment["id"], "again", student),
        cancel_by_guidance(appointment["id"], "again", counselor),
    ]
    for attempt in attempts:
        with pytest.raises(InvalidTransition) as exc_info:
            await attempt
        assert exc_info.value.details["currentStatus"] == terminal

    assert (await get_appointment_by_id(appointment["id"]))["status"] == terminal


@pytest.mark.parametrize("reason", ["", "   ", None])
async def test_cancellation_requires_reason(reason, student, counselor):
    appointment = await create_appointment(booking(), student)

    with pytest.raises(ValidationFailure):
        await cancel_by_student(appointment["id"], reason, student)
    with pytest.raises(ValidationFailure):
        await cancel_by_guidance(appointment["id"], reason, counselor)

    unchanged = await get_appointment_by_id(appointment["id"])
    assert unchanged["status"] == "pending"
    assert "cancellationReason" not in unchanged


async def test_student_cannot_cancel_someone_elses_appointment(student, other_student):
    appointment = await create_appointment(booking(), student)

    with pytest.raises(PermissionDenied):
        await cancel_by_student(appointment["id"], "not mine", other_student)


async def test_cancel_by_student_notifies_counselors_with_acknowledgment(student, counselors):
    appointment = await create_appointment(booking(), student)

    cancelled = await cancel_by_student(appointment["id"], "conflict", student)

    assert cancelled["status"] == "cancelled"
    assert cancelled["cancellationBy"] == "student"
    assert cancelled["cancellationReason"] == "conflict"
    assert cancelled["acknowledged"] is False
    notifications = [
        n for n in await get_notifications_for_appointment(appointment["id"])
        if n["type"] == "appointment_cancelled"
    ]
    assert sorted(n["userId"] for n in notifications) == sorted(c.uid for c in counselors)
    assert all(n["requiresAcknowledgment"] for n in notifications)


async def test_cancel_dispatches_on_acting_role(student, counselor):
    first = await create_appointment(booking("9:00 AM"), student)
    second = await create_appointment(booking("11:00 AM"), student)

    assert (await cancel_appointment(first["id"], "sick", student))["cancellationBy"] == "student"
    assert (await cancel_appointment(second["id"], "office closed", counselor))["cancellationBy"] == "guidance"


async def test_guidance_cancellation_acknowledge_is_idempotent(student, counselor):
    appointment = await create_appointment(booking(), student)
    await approve_appointment(appointment["id"], counselor)

    cancelled = await cancel_by_guidance(appointment["id"], "Counselor unavailable", counselor)
    assert cancelled["requiresAcknowledgment"] is True
    assert cancelled["acknowledged"] is False

    [pending_ack] = [n for n in await get_notifications(student.uid) if n["requiresAcknowledgment"]]
    assert pending_ack["type"] == "appointment_status"
    assert "Counselor unavailable" in pending_ack["message"]

    first = await acknowledge_cancellation(appointment["id"], student)
    second = await acknowledge_cancellation(appointment["id"], student)

    assert first["acknowledged"] is True
    assert second["acknowledged"] is True
    assert second["acknowledgedAt"] == first["acknowledgedAt"]
    [acknowledged] = [n for n in await get_notifications(student.uid) if n["requiresAcknowledgment"]]
    assert acknowledged["acknowledged"] is True


async def test_acknowledge_only_applies_to_guidance_cancellations(student):
    appointment = await create_appointment(booking(), student)

    with pytest.raises(InvalidTransition):
        await acknowledge_cancellation(appointment["id"], student)

    await cancel_by_student(appointment["id"], "conflict", student)
    with pytest.raises(InvalidTransition):
        await acknowledge_cancellation(appointment["id"], student)


async def test_notification_failure_does_not_block_transition(monkeypatch, student, counselor):
    appointment = await create_appointment(booking(), student)

    async def broken_sink(notification):
        raise RuntimeError("sink down")

    monkeypatch.setattr(notification_service, "create_notification", broken_sink)

    approved = await approve_appointment(appointment["id"], counselor)

    assert approved["status"] == "confirmed"
    assert (await get_appointment_by_id(appointment["id"]))["status"] == "confirmed"


async def test_status_change_for_unknown_student_account_is_skipped(counselor, mongo):
    student = await create_user("ghost@school.edu", "Ghost", [Capability.STUDENT], student_id="2020-99999")
    appointment = await create_appointment(booking(), student)
    await mongo.users.delete_one({"studentId": "2020-99999"})

    approved = await approve_appointment(appointment["id"], counselor)

    assert approved["status"] == "confirmed"
    notifications = await get_notifications_for_appointment(appointment["id"])
    assert {n["type"] for n in notifications} == {"appointment_scheduled"}


async def test_unknown_or_malformed_ids_raise_not_found(counselor):
    with pytest.raises(NotFound):
        await get_appointment_by_id("not-an-id")
    with pytest.raises(NotFound):
        await approve_appointment("65f000000000000000000000", counselor)


async def test_listing_orders_by_date_and_slot_time(student, other_student, counselor):
    await create_appointment(booking("2:00 PM"), student)
    await create_appointment(booking("9:00 AM"), other_student)
    await create_appointment(booking("11:00 AM", date="2024-03-03"), student)

    listed = await list_appointments()
    assert [(a["date"], a["timeSlot"]) for a in listed] == [
        ("2024-03-03", "11:00 AM"), ("2024-03-04", "9:00 AM"), ("2024-03-04", "2:00 PM")
    ]
    assert len(await get_student_appointments(student.studentId)) == 2


async def test_paged_listing_orders_by_slot_time_before_paging(student, other_student):
    await create_appointment(booking("2:00 PM"), student)
    await create_appointment(booking("9:00 AM"), other_student)
    await create_appointment(booking("11:00 AM"), student)

    pages = [await list_appointments(skip=skip, limit=1) for skip in range(3)]
    assert [page[0]["timeSlot"] for page in pages] == ["9:00 AM", "11:00 AM", "2:00 PM"]
    assert await list_appointments(skip=3, limit=1) == []


async def test_dashboard_stats(student, counselor):
    first = await create_appointment(booking("9:00 AM"), student)
    await create_appointment(booking("10:00 AM"), student)
    await create_appointment(booking("10:00 AM", date="2024-03-05"), student)
    await approve_appointment(first["id"], counselor)

    stats = await get_appointment_stats("2024-03-04")

    assert stats["total"] == 3
    assert stats["byStatus"]["pending"] == 2
    assert stats["byStatus"]["confirmed"] == 1
    assert stats["byStatus"]["cancelled"] == 0
    assert stats["today"] == 2


async def test_end_to_end_booking_lifecycle(student, counselors):
    counselor = counselors[0]
    assert "10:00 AM" in await list_available_slots("2024-03-04")

    appointment = await create_appointment(booking(), student)
    assert appointment["status"] == "pending"
    scheduled = await get_notifications_for_appointment(appointment["id"])
    assert len([n for n in scheduled if n["type"] == "appointment_scheduled"]) == len(counselors)
    assert "10:00 AM" not in await list_available_slots("2024-03-04")

    approved = await approve_appointment(appointment["id"], counselor)
    assert approved["status"] == "confirmed"
    [status_notification] = await get_notifications(student.uid)
    assert status_notification["type"] == "appointment_status"
    assert "confirmed" in status_notification["message"]

    cancelled = await cancel_by_student(appointment["id"], "conflict", student)
    assert cancelled["status"] == "cancelled"
    assert cancelled["cancellationBy"] == "student"
    for c in counselors:
        cancellations = [n for n in await get_notifications(c.uid) if n["type"] == "appointment_cancelled"]
        assert len(cancellations) == 1
        assert cancellations[0]["requiresAcknowledgment"] is True

    assert "10:00 AM" in await list_available_slots("2024-03-04")
