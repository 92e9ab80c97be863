import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env from the same directory as this file, regardless of where Flask is run from
load_dotenv(Path(__file__).parent / ".env")


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-in-production")
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL", "sqlite:///form_builder.db"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    MAX_REPEAT_COUNT = 10
    API_VERSION = "1.0.0"


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    LOG_LEVEL = "DEBUG"
