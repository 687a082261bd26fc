import os

# Settings
SECRET_KEY = os.getenv("SECRET_KEY", "super-secret-key-change")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7))
RESET_TOKEN_EXPIRE_MINUTES = int(os.getenv("RESET_TOKEN_EXPIRE_MINUTES", 60))

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "meetclone")
LOCAL_STORAGE_PATH = os.getenv("LOCAL_STORAGE_PATH")

APP_URL = os.getenv("APP_URL", "http://localhost:3000")
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

PORT = int(os.getenv("PORT", 8000))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Polling intervals, in seconds
MEETING_POLL_INTERVAL = 5
TOKEN_CHECK_INTERVAL = 60
IDENTITY_REFRESH_INTERVAL = 5 * 60


def is_production() -> bool:
    return ENVIRONMENT == "production"
