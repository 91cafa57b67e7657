import os
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "default-secret-key")
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", f"sqlite:///{BASE_DIR / 'shelfmark.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    METADATA_FETCH_TIMEOUT = float(os.environ.get("METADATA_FETCH_TIMEOUT", "10"))
    METADATA_MAX_BYTES = int(os.environ.get("METADATA_MAX_BYTES", "2500000"))
    GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY", "")
    GEMINI_MODEL = os.environ.get("GEMINI_MODEL", "gemini-2.5-flash")
    IMPORT_SINGLE_TRANSACTION = os.environ.get("IMPORT_SINGLE_TRANSACTION", "0") == "1"
    MAX_CONTENT_LENGTH = int(os.environ.get("IMPORT_MAX_BYTES", str(10 * 1024 * 1024)))


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    GEMINI_API_KEY = ""
    IMPORT_SINGLE_TRANSACTION = False
