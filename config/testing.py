import os

SECRET_KEY = "test-secret"

DB_CONFIG = {
    "host": os.getenv("DB_HOST", "localhost"),
    "port": int(os.getenv("DB_PORT", "3306")),
    "user": os.getenv("DB_USER", "root"),
    "password": os.getenv("DB_PASSWORD", ""),
    "database": os.getenv("DB_NAME", "leavedesk_test"),
}

DEBUG = False
TESTING = True
LOG_LEVEL = "WARNING"

AUTO_INIT_DB = bool(int(os.getenv("AUTO_INIT_DB", "0")))
AUTO_SEED_DB = bool(int(os.getenv("AUTO_SEED_DB", "0")))

CRON_SECRET = "test-cron-secret"

LEMONSQUEEZY_API_KEY = ""
LEMONSQUEEZY_STORE_ID = ""
LEMONSQUEEZY_WEBHOOK_SECRET = "test-webhook-secret"
LEMONSQUEEZY_MONTHLY_VARIANT_ID = "1001"
LEMONSQUEEZY_YEARLY_VARIANT_ID = "1002"

SLACK_ALERT_WEBHOOK_URL = ""

INVITATION_TTL_DAYS = 7
RATELIMIT_ENABLED = False
