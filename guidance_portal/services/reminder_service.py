"""
Reminders for confirmed appointments starting soon.

``scan`` fires at most one reminder per appointment: reminded ids are kept per
student in the ``notifiedAppointments`` ledger and never pruned. Only
appointments whose start lies in (now, now + lead] are reminded, so an
appointment that has already started is never reminded late.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Set
from zoneinfo import ZoneInfo

from guidance_portal.core.config import settings
from guidance_portal.db.mongodb import db, store_call
from guidance_portal.schemas.appointment import AppointmentStatus
from guidance_portal.services.appointment_service import get_student_appointments
from guidance_portal.services.notification_service import AppointmentEvent, notify
from guidance_portal.services.time_slot_service import parse_slot_start

logger = logging.getLogger(__name__)

LEDGER_COLLECTION = "notifiedAppointments"

class StudentLocks:
    """One lock per student, dropped once nobody holds or waits on it."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, student_id: str):
        lock = self._locks.setdefault(student_id, asyncio.Lock())
        self._holders[student_id] = self._holders.get(student_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[student_id] -= 1
            if not self._holders[student_id]:
                del self._holders[student_id]
                del self._locks[student_id]

_student_locks = StudentLocks()

def local_now() -> datetime:
    """Current wall-clock time in the portal's timezone, without tzinfo."""
    return datetime.now(ZoneInfo(settings.TIMEZONE)).replace(tzinfo=None)

def parse_appointment_datetime(day: str, time_slot: str) -> Optional[datetime]:
    if not day or not time_slot:
        return None
    start = parse_slot_start(time_slot)
    if start is None:
        return None
    try:
        return datetime.combine(datetime.strptime(day, "%Y-%m-%d").date(), start)
    except ValueError:
        return None

@store_call
async def get_reminder_ledger(student_id: str) -> Set[str]:
    document = await db.db[LEDGER_COLLECTION].find_one({"_id": student_id})
    return set(document.get("appointments", [])) if document else set()

@store_call
async def _record_reminded(student_id: str, appointment_ids: List[str]) -> None:
    await db.db[LEDGER_COLLECTION].update_one(
        {"_id": student_id},
        {
            "$addToSet": {"appointments": {"$each": appointment_ids}},
            "$set": {"updatedAt": datetime.utcnow()}
        },
        upsert=True
    )

async def scan(
    student_id: str,
    appointments: List[Dict[str, Any]],
    now: Optional[datetime] = None
) -> List[str]:
    """
    Fire reminders for a student's confirmed appointments inside the lead window.

    Returns the ids reminded by this call. The ledger is written once, and only
    when at least one reminder fired.
    """
    now = now or local_now()
    window_end = now + timedelta(minutes=settings.REMINDER_LEAD_MINUTES)
    
    async with _student_locks.hold(student_id):
        already_reminded = await get_reminder_ledger(student_id)
        reminded = []
        
        for appointment in appointments:
            if appointment.get("status") != AppointmentStatus.CONFIRMED.value:
                continue
            if appointment["id"] in already_reminded or appointment.get("studentId") != student_id:
                continue
            
            starts_at = parse_appointment_datetime(appointment.get("date"), appointment.get("timeSlot"))
            if starts_at is None:
                logger.warning(
                    f"Skipping reminder for {appointment['id']}: cannot parse "
                    f"{appointment.get('date')} {appointment.get('timeSlot')}"
                )
                continue
            
            if now < starts_at <= window_end:
                created = await notify(AppointmentEvent.REMINDER_DUE, appointment)
                if created:
                    reminded.append(appointment["id"])
        
        if reminded:
            await _record_reminded(student_id, reminded)
            logger.info(f"Sent {len(reminded)} reminder(s) to student {student_id}")
    
    return reminded

async def check_upcoming_appointments(student_id: str, now: Optional[datetime] = None) -> List[str]:
    """
    Load a student's appointments and scan them immediately
    """
    appointments = await get_student_appointments(student_id, status=AppointmentStatus.CONFIRMED)
    if not appointments:
        return []
    return await scan(student_id, appointments, now)

@store_call
async def scan_all_students(now: Optional[datetime] = None) -> int:
    """
    Scan every student with a confirmed appointment that could fall in the window
    """
    now = now or local_now()
    window_end = now + timedelta(minutes=settings.REMINDER_LEAD_MINUTES)
    days = sorted({now.date().isoformat(), window_end.date().isoformat()})
    
    cursor = db.db.appointments.find(
        {"status": AppointmentStatus.CONFIRMED.value, "date": {"$in": days}},
        {"studentId": 1}
    )
    student_ids = {appointment["studentId"] for appointment in await cursor.to_list(length=None)}
    
    total = 0
    for student_id in sorted(student_ids):
        total += len(await check_upcoming_appointments(student_id, now))
    return total

class ReminderScheduler:
    """Runs scan_all_students on a fixed interval until stopped."""
    
    def __init__(self, interval_seconds: Optional[int] = None):
        self.interval_seconds = interval_seconds or settings.REMINDER_INTERVAL_SECONDS
        self._task: Optional[asyncio.Task] = None
    
    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
    
    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info(f"Reminder scheduler started (every {self.interval_seconds}s)")
    
    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Reminder scheduler stopped")
    
    async def _run(self) -> None:
        while True:
            try:
                await scan_all_students()
            except Exception as e:
                logger.error(f"Reminder scan failed: {e}")
            await asyncio.sleep(self.interval_seconds)

reminder_scheduler = ReminderScheduler()
