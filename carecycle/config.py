import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./carecycle.db")

# Per-statement timeout applied to PostgreSQL connections (0 = no timeout)
DB_STATEMENT_TIMEOUT_MS = int(os.getenv("DB_STATEMENT_TIMEOUT_MS", "0"))

# Redis / ARQ Configuration
REDIS_URL = os.getenv("REDIS_URL")
REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", "6379"))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD")
REDIS_SSL = os.getenv("REDIS_SSL", "false").lower() == "true"

# Reminder defaults used when a schedule does not carry its own value
DEFAULT_NOTIFICATION_DAYS_BEFORE = int(os.getenv("DEFAULT_NOTIFICATION_DAYS_BEFORE", "1"))
DEFAULT_NOTIFICATION_CHANNEL = os.getenv("DEFAULT_NOTIFICATION_CHANNEL", "dashboard")

# Auto-hold cron: pauses schedules overdue past the organization policy
AUTO_HOLD_ENABLED = os.getenv("AUTO_HOLD_ENABLED", "true").lower() == "true"
AUTO_HOLD_BATCH_SIZE = int(os.getenv("AUTO_HOLD_BATCH_SIZE", "100"))

# CORS origins for the dashboard frontend
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
CORS_ORIGINS = [FRONTEND_URL] + [
    origin.strip() for origin in os.getenv("CORS_ORIGINS", "").split(",") if origin.strip()
]
