import logging
import os
import sys

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "fabricshop")

# Session token (JWT) config
SESSION_SECRET = os.getenv("SESSION_SECRET", "fabric-haven-secret")
SESSION_ALGORITHM = "HS256"
SESSION_COOKIE = os.getenv("SESSION_COOKIE", "fabric_session")
SESSION_MAX_AGE_MINUTES = int(os.getenv("SESSION_MAX_AGE_MINUTES", 60 * 24))  # 24 hours
COOKIE_SECURE = os.getenv("COOKIE_SECURE", "false").lower() == "true"

UPLOAD_DIR = os.getenv("UPLOAD_DIR", os.path.join(os.getcwd(), "uploads"))
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", 10 * 1024 * 1024))  # 10MB
MAX_UPLOAD_FILES = 10

ADMIN_USERNAME = os.getenv("ADMIN_USERNAME", "admin")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123")
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@fabrichaven.in")
SEED_SAMPLE_PRODUCTS = os.getenv("SEED_SAMPLE_PRODUCTS", "true").lower() == "true"

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
PORT = int(os.getenv("PORT", 8000))


def setup_logging(level: str = LOG_LEVEL) -> None:
    # no-op when the server (or pytest) already configured the root logger
    logging.basicConfig(
        level=level,
        stream=sys.stdout,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
