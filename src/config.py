"""Configuration module for the Forensic AR course-access service.

This module provides centralized configuration management, including directory
paths, API server settings, authentication limits, and the course catalog.
All configuration values can be overridden via environment variables.
"""

import os
from pathlib import Path
from typing import Dict, List

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# --- Directory Configuration ---

# Root directory of the project
ROOT_DIR = Path(__file__).parent.parent.resolve()

# Data directory name
DATA_DIR_NAME = "data"
DATA_DIR = Path(os.getenv("DATA_DIR", str(ROOT_DIR / DATA_DIR_NAME)))

# --- Database Configuration ---

DATABASE_URL: str = os.getenv(
    "DATABASE_URL", f"sqlite:///{DATA_DIR}/forensic_ar.db"
)

# --- API Server Configuration ---

API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
API_PORT: int = int(os.getenv("API_PORT", "8000"))

# CORS allowed origins (comma-separated list)
_CORS_ALLOWED_ORIGINS_STR: str = os.getenv(
    "CORS_ALLOWED_ORIGINS",
    "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000,"
    "http://127.0.0.1:3000",
)
CORS_ALLOWED_ORIGINS: List[str] = [
    origin.strip()
    for origin in _CORS_ALLOWED_ORIGINS_STR.split(",")
    if origin.strip()
]

# --- Logging Configuration ---

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

# --- Authentication Configuration ---

JWT_SECRET_KEY: str = os.getenv("JWT_SECRET_KEY", "change-me-in-production")
JWT_ALGORITHM: str = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES: int = int(
    os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24 * 7))
)

# Bcrypt rounds for password hashing (higher = more secure but slower)
BCRYPT_ROUNDS: int = int(os.getenv("BCRYPT_ROUNDS", "12"))

# Minimum password length accepted at sign-up
MIN_PASSWORD_LENGTH: int = int(os.getenv("MIN_PASSWORD_LENGTH", "6"))

# Consecutive failed logins before the account is locked out
LOCKOUT_THRESHOLD: int = int(os.getenv("LOCKOUT_THRESHOLD", "3"))

# How long a lockout lasts, in seconds
LOCKOUT_DURATION_SECONDS: float = float(
    os.getenv("LOCKOUT_DURATION_SECONDS", "300")
)

# --- Startup Connectivity ---

INIT_MAX_ATTEMPTS: int = int(os.getenv("INIT_MAX_ATTEMPTS", "3"))
INIT_BACKOFF_SECONDS: float = float(os.getenv("INIT_BACKOFF_SECONDS", "2.0"))

# --- Course Unlock Resolution ---

# Maximum age (seconds) of an in-flight resolution that new callers may join
RESOLVE_COOLDOWN_SECONDS: float = float(
    os.getenv("RESOLVE_COOLDOWN_SECONDS", "5")
)

# --- Document Store Collections ---

USERS_COLLECTION: str = "users"
CLASSES_COLLECTION: str = "classes"
ACTIVITY_SUBCOLLECTION: str = "LogsAR"

# --- Course Catalog ---

# Display name and AR scene for each known course id
COURSE_SCENES: Dict[str, Dict[str, str]] = {
    "evidencekit": {
        "display_name": "Evidence Collection Kit",
        "scene_name": "EvidenceKitModels",
    },
    "surveillance": {
        "display_name": "Surveillance",
        "scene_name": "SurveillanceModels",
    },
    "fire": {
        "display_name": "Fire Equipment",
        "scene_name": "FireEquipmentModels",
    },
    "fingerprint": {
        "display_name": "Fingerprint",
        "scene_name": "FingerprintModels",
    },
    "photography": {
        "display_name": "Photography",
        "scene_name": "PhotographyModels",
    },
    "microscopy": {
        "display_name": "Microscopy",
        "scene_name": "MicroscopyModels",
    },
}

# Ordered course ids shown to users (comma-separated list)
_COURSE_CATALOG_STR: str = os.getenv(
    "COURSE_CATALOG", ",".join(COURSE_SCENES.keys())
)
COURSE_CATALOG: List[str] = [
    course.strip() for course in _COURSE_CATALOG_STR.split(",") if course.strip()
]
