import os


def _is_true(v):
    return (v or "").strip().lower() in ("1", "true", "yes", "on")


def _csv(v):
    return [item.strip() for item in (v or "").split(",") if item.strip()]


DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "clawmachine")

PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/")
STORAGE_DIR = os.getenv("STORAGE_DIR", "./storage")

DAILY_SUBMISSION_LIMIT = int(os.getenv("DAILY_SUBMISSION_LIMIT", "10"))
CLAWS_REWARD = int(os.getenv("CLAWS_REWARD", "100"))
# When enabled, every authenticated submission that reaches the rate-limit
# stage consumes quota, whether or not it is eventually published.
QUOTA_COUNTS_FAILED_SUBMISSIONS = _is_true(os.getenv("QUOTA_COUNTS_FAILED_SUBMISSIONS", "false"))
PIPELINE_TIMEOUT_SECONDS = float(os.getenv("PIPELINE_TIMEOUT_SECONDS", "30"))

ALLOWED_SCRIPT_HOSTS = _csv(
    os.getenv("ALLOWED_SCRIPT_HOSTS", "cdn.jsdelivr.net,unpkg.com,cdnjs.cloudflare.com")
)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = _csv(os.getenv("CORS_ORIGINS", "*"))
