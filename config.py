import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Server Configuration
SERVER_HOST = os.getenv("SERVER_HOST", "localhost")
SERVER_PORT = int(os.getenv("SERVER_PORT", "8000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Database Configuration
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./workspace_stats.db")

# Submission uploads
SUBMISSIONS_DIR = os.getenv("SUBMISSIONS_DIR", "task_submissions")

# Statistics Configuration
STATS_CACHE_TTL_MINUTES = int(os.getenv("STATS_CACHE_TTL_MINUTES", "15"))
STATS_TREND_DAYS = int(os.getenv("STATS_TREND_DAYS", "30"))
# Python weekday numbering: Monday is 0, Sunday is 6
STATS_WEEK_START = int(os.getenv("STATS_WEEK_START", "6"))
ON_TIME_THRESHOLD_DAYS = int(os.getenv("ON_TIME_THRESHOLD_DAYS", "7"))
SPEED_REFERENCE_HOURS = float(os.getenv("SPEED_REFERENCE_HOURS", "168"))

# Badge Configuration
BADGE_COMPLETION_MILESTONES = [
    int(value) for value in os.getenv("BADGE_COMPLETION_MILESTONES", "10,50,100").split(",") if value.strip()
]
QUALITY_BADGE_MIN_COMPLETED = int(os.getenv("QUALITY_BADGE_MIN_COMPLETED", "20"))
QUALITY_BADGE_MAX_REVISION_RATE = float(os.getenv("QUALITY_BADGE_MAX_REVISION_RATE", "10"))
