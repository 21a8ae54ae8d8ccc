"""
Environment configuration for the Trainee Portal API.

Values come from the process environment, optionally seeded from a local .env file.
"""
import os

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "trainee-db")

ENVIRONMENT = os.getenv("ENVIRONMENT", "production")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# CSV import
MAX_IMPORT_BYTES = int(os.getenv("MAX_IMPORT_BYTES", str(2 * 1024 * 1024)))
DEFAULT_IMPORT_PASSWORD = os.getenv("DEFAULT_IMPORT_PASSWORD", "ChangeMe123!")

# Credentials
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "10"))

# Admin access; without a key the admin routes only open in development
ADMIN_API_KEY = os.getenv("ADMIN_API_KEY")
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")

PORT = int(os.getenv("PORT", "8000"))
