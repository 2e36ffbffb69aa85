import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./rmv_fabrication.db")

# Security - bearer tokens are minted by the identity provider, we only read the claims
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# Frontend base URL for CORS and email links
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

# Resend Email Configuration (SMTP is used when no API key is configured)
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "RMV Stainless Steel <noreply@rmvsteel.com>")
SMTP_HOST = os.getenv("SMTP_HOST", "smtp.gmail.com")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
EMAIL_WORKERS = int(os.getenv("EMAIL_WORKERS", "4"))

# Business rules - appointments
APPOINTMENT_START_HOUR = int(os.getenv("APPOINTMENT_START_HOUR", "9"))  # 9:00 AM
APPOINTMENT_END_HOUR = int(os.getenv("APPOINTMENT_END_HOUR", "18"))  # 6:00 PM, exclusive
SLOT_DURATION_MINUTES = int(os.getenv("SLOT_DURATION_MINUTES", "60"))
CANCELLATION_CUTOFF_HOURS = int(os.getenv("CANCELLATION_CUTOFF_HOURS", "24"))

# Business rules - payment stages (percentages, must sum to 100)
PAYMENT_STAGE_PERCENTAGES = {
    "initial": int(os.getenv("PAYMENT_STAGE_INITIAL", "30")),
    "midpoint": int(os.getenv("PAYMENT_STAGE_MIDPOINT", "40")),
    "final": int(os.getenv("PAYMENT_STAGE_FINAL", "30")),
}

PROJECT_CATEGORIES = [
    "gate",
    "railing",
    "grills",
    "door",
    "fence",
    "staircase",
    "furniture",
    "kitchen",
    "custom",
    "gates",
    "railings",
    "commercial",
]

# User roles
CUSTOMER = "customer"
APPOINTMENT_AGENT = "appointment_agent"
SALES_STAFF = "sales_staff"
ENGINEER = "engineer"
CASHIER = "cashier"
FABRICATION_STAFF = "fabrication_staff"
ADMIN = "admin"

ROLES = [CUSTOMER, APPOINTMENT_AGENT, SALES_STAFF, ENGINEER, CASHIER, FABRICATION_STAFF, ADMIN]
STAFF_ROLES = [role for role in ROLES if role != CUSTOMER]
