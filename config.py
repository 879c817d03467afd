import os


def _flag(name, default):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL = os.getenv("BILLSMART_DATABASE_URL", "sqlite:///./billsmart.db")

SECRET_KEY = os.getenv("BILLSMART_SECRET_KEY", "billsmart-development-secret-key-change-me")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("BILLSMART_TOKEN_EXPIRE_MINUTES", "60"))

SMTP_HOST = os.getenv("BILLSMART_SMTP_HOST")
SMTP_PORT = int(os.getenv("BILLSMART_SMTP_PORT", "587"))
SMTP_USER = os.getenv("BILLSMART_SMTP_USER")
SMTP_PASSWORD = os.getenv("BILLSMART_SMTP_PASSWORD")
EMAIL_FROM = os.getenv("BILLSMART_EMAIL_FROM")
APP_URL = os.getenv("BILLSMART_APP_URL", "http://localhost:3000")

CRON_SECRET = os.getenv("BILLSMART_CRON_SECRET")
SCHEDULER_ENABLED = _flag("BILLSMART_SCHEDULER_ENABLED", True)
REMINDER_HOUR = int(os.getenv("BILLSMART_REMINDER_HOUR", "9"))

LOG_LEVEL = os.getenv("BILLSMART_LOG_LEVEL", "INFO").upper()

# Reminders are only considered for bills due within this many days.
REMINDER_WINDOW_DAYS = 7

DEFAULT_CATEGORIES = [
    ("General", "#6B7280"),
    ("Utilities", "#F59E0B"),
    ("Rent", "#EF4444"),
    ("Subscriptions", "#3B82F6"),
]
