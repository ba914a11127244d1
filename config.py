"""Runtime configuration for the blood donation API.

Values come from the environment; a ``.env`` file in the working directory
is loaded first so local runs behave like the hosted deployment.
"""
import os

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL") or os.getenv("MONGODB_URI")
"""MongoDB connection string."""

DATABASE_NAME = os.getenv("DATABASE_NAME", "BloodDonationAppDB")

PORT = int(os.getenv("PORT", 8000))

FB_SERVICE_KEY = os.getenv("FB_SERVICE_KEY")
"""Base64 encoded Firebase service account JSON."""

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")

SITE_DOMAIN = os.getenv("SITE_DOMAIN", "http://localhost:5173")
"""Front-end origin used for checkout success/cancel redirects."""

ALLOWED_ORIGINS = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "*").split(",") if o.strip()]

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
