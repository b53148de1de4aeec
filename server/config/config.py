import os
from dotenv import load_dotenv

load_dotenv()

# MongoDB
MONGODB_URI = os.getenv("MONGODB_URI")
MONGODB_USERNAME = os.getenv("MONGODB_USERNAME", "")
MONGODB_PASSWORD = os.getenv("MONGODB_PASSWORD", "")
CLUSTER_NAME = os.getenv("CLUSTER_NAME", "")
APP_NAME = os.getenv("APP_NAME", "festival-registration")
DATABASE_NAME = os.getenv("DATABASE_NAME", "festival")

# Web
SESSION_SECRET_KEY = os.getenv("SESSION_SECRET_KEY")
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Registration engine
FESTIVAL_NAME = os.getenv("FESTIVAL_NAME", "Festival 2025")
REGISTRATION_NUMBER_PREFIX = os.getenv("REGISTRATION_NUMBER_PREFIX", "FEST2025")
USER_CODE_PREFIX = os.getenv("USER_CODE_PREFIX", "FEST25")
USER_CODE_SUFFIX_LENGTH = int(os.getenv("USER_CODE_SUFFIX_LENGTH", "6"))
USER_CODE_MAX_ATTEMPTS = int(os.getenv("USER_CODE_MAX_ATTEMPTS", "20"))

# Outbound mail
SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
EMAIL_FROM = os.getenv("EMAIL_FROM", SMTP_USER)

# Payment proof
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads/payments")
MAX_SCREENSHOT_BYTES = int(os.getenv("MAX_SCREENSHOT_BYTES", str(5 * 1024 * 1024)))
PAYMENT_UPI_ID = os.getenv("PAYMENT_UPI_ID", "")
PAYMENT_ACCOUNT_NAME = os.getenv("PAYMENT_ACCOUNT_NAME", FESTIVAL_NAME)
CURRENCY = os.getenv("CURRENCY", "INR")
