"""
BharatCRM - Configuration and shared helpers
"""

import os
import uuid
from datetime import datetime, timezone
from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
from pathlib import Path

# Load .env
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# MongoDB
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'bharatcrm')

client = AsyncIOMotorClient(MONGO_URL)
db = client[DB_NAME]

# Scheduled polling (external cron hits /api/integrations/poll)
POLLING_SECRET = os.environ.get('POLLING_SECRET', '')
DEFAULT_POLL_INTERVAL_SECONDS = int(os.environ.get('DEFAULT_POLL_INTERVAL_SECONDS', '180'))
DEFAULT_LOOKBACK_HOURS = int(os.environ.get('DEFAULT_LOOKBACK_HOURS', '24'))

# Ingestion
INGESTION_CONCURRENCY = int(os.environ.get('INGESTION_CONCURRENCY', '8'))
PLATFORM_TIMEOUT_SECONDS = float(os.environ.get('PLATFORM_TIMEOUT_SECONDS', '20'))
MAX_BATCH_ERRORS = int(os.environ.get('MAX_BATCH_ERRORS', '50'))
# A run still marked syncing after this long is treated as crashed
SYNC_LOCK_TIMEOUT_SECONDS = int(os.environ.get('SYNC_LOCK_TIMEOUT_SECONDS', '900'))

# Platforms
FACEBOOK_GRAPH_VERSION = os.environ.get('FACEBOOK_GRAPH_VERSION', 'v18.0')
GOOGLE_CLIENT_ID = os.environ.get('GOOGLE_CLIENT_ID', '')
GOOGLE_CLIENT_SECRET = os.environ.get('GOOGLE_CLIENT_SECRET', '')


# ==================== HELPERS ====================

def get_db():
    """Current database handle (patched in tests)."""
    return db


def now_iso() -> str:
    """Current UTC time as ISO string"""
    return datetime.now(timezone.utc).isoformat()


def generate_id() -> str:
    return str(uuid.uuid4())


def to_utc_iso(value) -> str:
    """
    Normalize a datetime or ISO string to a UTC ISO string so that
    string comparisons in range queries stay consistent.
    Naive values are treated as UTC.
    """
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def mask_phone(phone: str) -> str:
    """***1234 style for logs"""
    if not phone:
        return ""
    return f"***{phone[-4:]}" if len(phone) >= 4 else phone
