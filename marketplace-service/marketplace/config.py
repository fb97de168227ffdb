import os

# ----- Database -----
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./marketplace.db")

# ----- Auth -----
JWT_SECRET = os.getenv("JWT_SECRET", "marketplace-dev-secret-change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_DAYS = int(os.getenv("JWT_EXPIRES_DAYS", "7"))

# ----- Payment gateway (Razorpay-compatible) -----
RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID", "")
RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET", "")
RAZORPAY_BASE_URL = os.getenv("RAZORPAY_BASE_URL", "https://api.razorpay.com")
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "INR")
GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "5.0"))

# ----- Logging -----
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
