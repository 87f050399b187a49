"""
Application settings for the Semester Manager API.

Values come from the environment (optionally a .env file). Every setting has a
development default so the app starts against a local MongoDB.
"""
import logging
import os
from typing import List

from dotenv import load_dotenv

# Load environment variables if present
load_dotenv()


def _split_csv(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


class Settings:
    def __init__(self):
        self.database_url = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
        self.database_name = os.getenv("DATABASE_NAME", "semester_manager")

        self.jwt_secret = os.getenv("JWT_SECRET", "devsecret")
        self.jwt_alg = os.getenv("JWT_ALG", "HS256")
        self.access_token_expire_minutes = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7))

        self.upload_dir = os.getenv("UPLOAD_DIR", "uploads")
        self.cors_origins = _split_csv(os.getenv("CORS_ORIGINS", "*"))
        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()

        # Minimum attendance percentage a student is expected to keep
        self.attendance_target = float(os.getenv("ATTENDANCE_TARGET", 75))
        if not 0 <= self.attendance_target < 100:
            raise ValueError(f"ATTENDANCE_TARGET must be in [0, 100), got {self.attendance_target:g}")

        self.port = int(os.getenv("PORT", 8000))


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
