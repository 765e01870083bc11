# config.py

import os

# -----------------------------------------------------------------------------
# Database
# -----------------------------------------------------------------------------
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./payments.db")
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "10"))
DB_POOL_TIMEOUT = int(os.getenv("DB_POOL_TIMEOUT", "30"))
DB_POOL_RECYCLE = int(os.getenv("DB_POOL_RECYCLE", "1800"))

# -----------------------------------------------------------------------------
# Operator auth
# -----------------------------------------------------------------------------
JWT_SECRET = os.getenv("JWT_SECRET", "change_me")
JWT_ALG = os.getenv("JWT_ALG", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "240"))

# -----------------------------------------------------------------------------
# Payment gateway (server-side only, never sent to the browser)
# -----------------------------------------------------------------------------
RAZORPAY_API_KEY = os.getenv("RAZORPAY_API_KEY")
RAZORPAY_SECRET_KEY = os.getenv("RAZORPAY_SECRET_KEY")
RAZORPAY_BASE_URL = os.getenv("RAZORPAY_BASE_URL", "https://api.razorpay.com/v1")
GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "10"))

# -----------------------------------------------------------------------------
# Settlement
# -----------------------------------------------------------------------------
# "atomic": status write + wallet credit in one DB transaction
# "two_step": commit status first, credit separately, queue discrepancies
SETTLEMENT_MODE = os.getenv("SETTLEMENT_MODE", "atomic")
DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "INR")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
