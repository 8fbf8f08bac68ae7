import os
from dotenv import load_dotenv

load_dotenv()

REDIS_URL            = os.getenv("REDIS_URL", "redis://localhost:6379/0")
LOCATION_STREAM      = os.getenv("LOCATION_STREAM", "locations")
LOCATION_GROUP       = os.getenv("LOCATION_GROUP", "speedguard-group")
LOCATION_CONSUMER    = os.getenv("LOCATION_CONSUMER", "speedguard-1")
NOTIFICATION_STREAM  = os.getenv("NOTIFICATION_STREAM", "notifications")
EVENT_CHANNEL        = os.getenv("EVENT_CHANNEL", "speedguard:events")
LIFECYCLE_KEY        = os.getenv("LIFECYCLE_KEY", "speedguard:lifecycle")
PERMISSION_KEY       = os.getenv("PERMISSION_KEY", "speedguard:permission")

NOTIFICATION_BACKEND = os.getenv("NOTIFICATION_BACKEND", "redis").lower()
PRIMARY_EMAIL        = os.getenv("PRIMARY_EMAIL")
SMTP_HOST            = os.getenv("SMTP_HOST")
SMTP_PORT            = int(os.getenv("SMTP_PORT", 465))
SMTP_USER            = os.getenv("SMTP_USER")
SMTP_PASSWORD        = os.getenv("SMTP_PASSWORD")

DESIRED_ACCURACY     = os.getenv("DESIRED_ACCURACY", "best_for_navigation")
DISTANCE_FILTER_M    = float(os.getenv("DISTANCE_FILTER_M", 5))
AUTOSTART            = os.getenv("AUTOSTART", "true").lower() in {"1", "true", "yes"}

LOG_DIR              = os.getenv("LOG_DIR", "logs")
LOG_LEVEL            = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_MAX_BYTES        = int(os.getenv("LOG_MAX_BYTES", 5_000_000))
LOG_BACKUPS          = int(os.getenv("LOG_BACKUPS", 3))
