from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError
from guidance_portal.core.config import settings
from guidance_portal.core.errors import StoreFailure
import functools
import logging

logger = logging.getLogger(__name__)

class Database:
    client: AsyncIOMotorClient = None
    db = None

db = Database()

async def connect_to_mongo():
    """Connect to MongoDB."""
    try:
        logger.info("Connecting to MongoDB...")
        db.client = AsyncIOMotorClient(settings.MONGO_URI)
        db.db = db.client[settings.DB_NAME]
        logger.info("Connected to MongoDB.")
        
        # Create indexes for collections
        await create_indexes()
        
    except Exception as e:
        logger.error(f"Could not connect to MongoDB: {e}")
        raise e

async def close_mongo_connection():
    """Close MongoDB connection."""
    if db.client:
        logger.info("Closing MongoDB connection...")
        db.client.close()
        logger.info("MongoDB connection closed.")

async def create_indexes():
    """Create indexes for collections."""
    # At most one pending/confirmed appointment per (date, timeSlot).
    # Booking relies on this index, so a failure here is fatal.
    await db.db.appointments.create_index(
        [("date", ASCENDING), ("timeSlot", ASCENDING)],
        unique=True,
        partialFilterExpression={"holdsSlot": True},
        name="unique_active_slot"
    )
    
    try:
        # Appointments collection indexes
        await db.db.appointments.create_index([("studentId", ASCENDING), ("date", ASCENDING)])
        await db.db.appointments.create_index([("date", ASCENDING), ("status", ASCENDING)])
        await db.db.appointments.create_index([("date", ASCENDING), ("slotMinutes", ASCENDING)])
        await db.db.appointments.create_index("status")
        
        # Users collection indexes
        await db.db.users.create_index("email", unique=True)
        await db.db.users.create_index("studentId")
        await db.db.users.create_index("capabilities")
        
        # Notifications collection indexes
        await db.db.notifications.create_index([("userId", ASCENDING), ("createdAt", DESCENDING)])
        await db.db.notifications.create_index("appointmentId")
        
        logger.info("MongoDB indexes created successfully.")
    except Exception as e:
        logger.error(f"Failed to create MongoDB indexes: {e}")

def store_call(func):
    """Surface document store failures as StoreFailure. No retry."""
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except PyMongoError as e:
            logger.error(f"Store call {func.__name__} failed: {e}")
            raise StoreFailure(f"Document store unavailable: {e}") from e
    return wrapper
