from pydantic_settings import BaseSettings
from typing import List
import os
from dotenv import load_dotenv

load_dotenv()

class Settings(BaseSettings):
    # App Settings
    APP_NAME: str = os.getenv("APP_NAME", "Guidance Portal")
    
    # MongoDB Settings
    MONGO_URI: str = os.getenv("MONGO_URI", "mongodb://localhost:27017")
    DB_NAME: str = os.getenv("DB_NAME", "guidance_portal_db")
    
    # JWT Auth
    SECRET_KEY: str = os.getenv("SECRET_KEY", "your_secret_key_here")
    ALGORITHM: str = os.getenv("ALGORITHM", "HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
    
    # CORS
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",  # React frontend
        "http://localhost:5173",
    ]
    
    # Scheduling
    TIMEZONE: str = os.getenv("TIMEZONE", "UTC")
    DEFAULT_TIME_SLOTS: List[str] = [
        "9:00 AM", "10:00 AM", "11:00 AM", "12:00 PM",
        "1:00 PM", "2:00 PM", "3:00 PM", "4:00 PM",
    ]
    
    # Reminders
    REMINDER_LEAD_MINUTES: int = int(os.getenv("REMINDER_LEAD_MINUTES", "30"))
    REMINDER_INTERVAL_SECONDS: int = int(os.getenv("REMINDER_INTERVAL_SECONDS", "60"))
    REMINDER_LOOP_ENABLED: bool = os.getenv("REMINDER_LOOP_ENABLED", "true").lower() in ("1", "true", "yes")
    
    # Live update streams
    STREAM_QUEUE_SIZE: int = int(os.getenv("STREAM_QUEUE_SIZE", "100"))
    
    class Config:
        env_file = ".env"
        case_sensitive = True

settings = Settings()
