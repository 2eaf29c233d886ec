import os

DATABASE_URL = os.getenv("BOOKING_DB")
if not DATABASE_URL:
    raise RuntimeError("BOOKING_DB environment variable is not set")

JWT_SECRET = os.getenv("JWT_SECRET")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM") or "HS256"

if not JWT_SECRET:
    raise RuntimeError("JWT_SECRET environment variable is not set")

REDIS_URL = os.getenv("REDIS_URL")  # optional: breaker + webhook dedup
RABBIT_URL = os.getenv("RABBIT_URL")  # optional: booking.paid events

# One physical table per deployment.
RESOURCE_TYPE = os.getenv("RESOURCE_TYPE") or "beerpong"
SLOT_MINUTES = int(os.getenv("SLOT_MINUTES") or "30")
PRICE_PER_HEAD = int(os.getenv("PRICE_PER_HEAD") or "700")  # JPY
CONFIRM_MAX_ATTEMPTS = int(os.getenv("CONFIRM_MAX_ATTEMPTS") or "3")

PAYMENT_TIMEOUT_SECONDS = float(os.getenv("PAYMENT_TIMEOUT_SECONDS") or "5")

PAYPAY_API_KEY = os.getenv("PAYPAY_API_KEY")
PAYPAY_API_SECRET = os.getenv("PAYPAY_API_SECRET")
PAYPAY_MERCHANT_ID = os.getenv("PAYPAY_MERCHANT_ID")
PAYPAY_BASE_URL = os.getenv("PAYPAY_BASE_URL") or "https://stg-api.paypay.ne.jp"
PAYPAY_REDIRECT_URL = os.getenv("PAYPAY_REDIRECT_URL") or "https://example.com/complete"

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")

LINE_SECRET = os.getenv("LINE_SECRET")
LINE_TOKEN = os.getenv("LINE_TOKEN")
LINE_API_URL = os.getenv("LINE_API_URL") or "https://api.line.me"
