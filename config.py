import os
from decimal import Decimal

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Environment configuration
ENV = os.getenv("ELEARN_ENV", "p").lower()
if ENV not in ["d", "p"]:
    raise ValueError("ELEARN_ENV must be either 'd' (development) or 'p' (production)")

# API Keys
AUTH_JWT_KEY = os.getenv("ELEARN_AUTH_JWT_KEY")
if not AUTH_JWT_KEY:
    raise ValueError("ELEARN_AUTH_JWT_KEY environment variable is not set")

# Firestore
FIRESTORE_DATABASE = os.getenv("ELEARN_FIRESTORE_DATABASE", "(default)")

# Platform home currency (prices, promo amounts)
HOME_CURRENCY = os.getenv("ELEARN_HOME_CURRENCY", "TND").upper()

# Outbound gateway calls
GATEWAY_TIMEOUT_SECONDS = float(os.getenv("ELEARN_GATEWAY_TIMEOUT_SECONDS", "15"))

# Stripe
# NOTE: Without a webhook secret Stripe webhooks are rejected unless
# ELEARN_STRIPE_ALLOW_UNSIGNED_WEBHOOKS=1 is set explicitly (insecure mode)
STRIPE_SECRET_KEY = os.getenv("ELEARN_STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("ELEARN_STRIPE_WEBHOOK_SECRET")
STRIPE_ALLOW_UNSIGNED_WEBHOOKS = (
    os.getenv("ELEARN_STRIPE_ALLOW_UNSIGNED_WEBHOOKS", "0") == "1"
)
STRIPE_CURRENCY = os.getenv("ELEARN_STRIPE_CURRENCY", "usd").upper()
STRIPE_SUCCESS_URL = os.getenv(
    "ELEARN_STRIPE_SUCCESS_URL", "http://localhost:8080/payment/success"
)
STRIPE_CANCEL_URL = os.getenv(
    "ELEARN_STRIPE_CANCEL_URL", "http://localhost:8080/payment/cancel"
)

# Paymee
PAYMEE_API_KEY = os.getenv("ELEARN_PAYMEE_API_KEY")
PAYMEE_API_URL = os.getenv(
    "ELEARN_PAYMEE_API_URL",
    "https://sandbox.paymee.tn/api/v2" if ENV == "d" else "https://app.paymee.tn/api/v2",
)
PAYMEE_CURRENCY = os.getenv("ELEARN_PAYMEE_CURRENCY", "TND").upper()
PAYMEE_SUCCESS_URL = os.getenv(
    "ELEARN_PAYMEE_SUCCESS_URL", "http://localhost:8080/payment/success"
)
PAYMEE_CANCEL_URL = os.getenv(
    "ELEARN_PAYMEE_CANCEL_URL", "http://localhost:8080/payment/cancel"
)
PAYMEE_WEBHOOK_URL = os.getenv("ELEARN_PAYMEE_WEBHOOK_URL")

# Approximate exchange rates used when a gateway settles in another currency.
# These are configuration constants, not market data: amounts converted with
# them are flagged as approximate and never used for refund accounting.
APPROXIMATE_EXCHANGE_RATES = {
    ("TND", "USD"): Decimal(os.getenv("ELEARN_RATE_TND_USD", "0.32")),
    ("USD", "TND"): Decimal(os.getenv("ELEARN_RATE_USD_TND", "3.125")),
}
