import os
from pathlib import Path
from dotenv import load_dotenv

# Force-load .env (Windows-safe, reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH)


def _clean_env(v):
    # strips quotes pasted along with the value
    return (v or "").strip().strip("'").strip('"')


DATABASE_URL = _clean_env(os.getenv("DATABASE_URL")) or "sqlite:///./checkout.db"

STRIPE_SECRET_KEY = _clean_env(os.getenv("STRIPE_SECRET_KEY"))

# "development" talks to the local /api/create-payment-intent endpoint,
# anything else invokes the managed function
CHECKOUT_ENV = _clean_env(os.getenv("CHECKOUT_ENV")) or "development"
IS_DEVELOPMENT = CHECKOUT_ENV.lower() == "development"

PAYMENT_API_URL = (_clean_env(os.getenv("PAYMENT_API_URL")) or "http://localhost:8000").rstrip("/")
FUNCTIONS_URL = _clean_env(os.getenv("FUNCTIONS_URL")).rstrip("/")
FUNCTIONS_KEY = _clean_env(os.getenv("FUNCTIONS_KEY"))
PAYMENT_INTENT_FUNCTION = _clean_env(os.getenv("PAYMENT_INTENT_FUNCTION")) or "create-payment-intent"
PAYMENT_INTENT_TIMEOUT = float(os.getenv("PAYMENT_INTENT_TIMEOUT") or 15)

CHECKOUT_RETURN_URL = (
    _clean_env(os.getenv("CHECKOUT_RETURN_URL"))
    or "http://localhost:5173/checkout/confirmation"
)

ZERO_DECIMAL_CURRENCIES = [
    c.strip() for c in _clean_env(os.getenv("ZERO_DECIMAL_CURRENCIES")).split(",") if c.strip()
]

LOG_LEVEL = _clean_env(os.getenv("LOG_LEVEL")) or "INFO"
LOG_FILE = _clean_env(os.getenv("LOG_FILE"))
