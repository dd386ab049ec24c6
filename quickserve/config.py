import os

DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL environment variable is not set")

# postgres:// URLs from hosting providers need the async driver
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql+asyncpg://", 1)

SQL_ECHO = (os.getenv("SQL_ECHO") or "false").lower() == "true"

JWT_SECRET = os.getenv("JWT_SECRET")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM") or "HS256"

if not JWT_SECRET:
    raise RuntimeError("JWT_SECRET environment variable is not set")

RABBIT_URL = os.getenv("RABBIT_URL")  # optional in dev, required if you want events
REALTIME_EXCHANGE = "realtime_events"

REDIS_URL = os.getenv("REDIS_URL")  # optional: rate limiting and webhook dedupe
RATE_LIMIT_PER_MINUTE = int(os.getenv("RATE_LIMIT_PER_MINUTE") or "120")

MOMO_BASE_URL = os.getenv("MOMO_BASE_URL")
MOMO_API_KEY = os.getenv("MOMO_API_KEY")
MOMO_SUBSCRIPTION_KEY = os.getenv("MOMO_SUBSCRIPTION_KEY")
MOMO_CALLBACK_URL = os.getenv("MOMO_CALLBACK_URL")
MOMO_TIMEOUT_SECONDS = float(os.getenv("MOMO_TIMEOUT_SECONDS") or "10")

CURRENCY = os.getenv("CURRENCY") or "GHS"

LOG_LEVEL = os.getenv("LOG_LEVEL") or "INFO"
