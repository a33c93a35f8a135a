from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from guidance_portal.core.config import settings
from guidance_portal.core.errors import PortalError
from guidance_portal.api.api_v1.api import router as api_router
from guidance_portal.db.mongodb import connect_to_mongo, close_mongo_connection
from guidance_portal.services.reminder_service import reminder_scheduler
import logging

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="Guidance Portal Backend API"
)

# Set up CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

# Include routers
app.include_router(api_router, prefix="/api/v1")

# MongoDB connection and reminder loop
@app.on_event("startup")
async def startup_db_client():
    await connect_to_mongo()
    if settings.REMINDER_LOOP_ENABLED:
        reminder_scheduler.start()

@app.on_event("shutdown")
async def shutdown_db_client():
    await reminder_scheduler.stop()
    await close_mongo_connection()

@app.get("/")
async def root():
    return {"message": "Welcome to Guidance Portal API"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
