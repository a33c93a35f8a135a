from fastapi import APIRouter
from guidance_portal.api.api_v1.endpoints import appointments, notifications, time_slots

router = APIRouter()

# Include all routers
router.include_router(appointments.router, prefix="/appointments", tags=["Appointments"])
router.include_router(time_slots.router, prefix="/time-slots", tags=["Time Slots"])
router.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])
