import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./clinic.db")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Comma separated list of frontend origins
ALLOWED_ORIGINS = os.getenv(
    "ALLOWED_ORIGINS",
    "http://localhost:5173,http://localhost:3000",
).split(",")

# Include raw exception text in 500 responses - development only
EXPOSE_ERROR_DETAILS = os.getenv("EXPOSE_ERROR_DETAILS", "false").lower() == "true"

# Orders
# Length of a visit when the caller does not send an endDate
DEFAULT_APPOINTMENT_MINUTES = int(os.getenv("DEFAULT_APPOINTMENT_MINUTES", "60"))
OVERDUE_DAYS_DEFAULT = int(os.getenv("OVERDUE_DAYS_DEFAULT", "30"))
MAX_PAGE_SIZE = int(os.getenv("MAX_PAGE_SIZE", "100"))

# Reports
REPORT_LOOKBACK_DAYS = int(os.getenv("REPORT_LOOKBACK_DAYS", "30"))
# Weekly capacity used for practitioner utilization (8 hours x 5 days)
WEEKLY_CAPACITY_HOURS = float(os.getenv("WEEKLY_CAPACITY_HOURS", "40"))
