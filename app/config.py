"""
Application settings (environment / .env driven).
"""
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite:///./data/donations.db"

    # Security
    SECRET_KEY: str = "your-secret-key-change-in-production"
    FERNET_KEY: str = ""  # empty → derived from SECRET_KEY

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    # File storage
    DATA_DIR: str = "./data"
    STORAGE_BACKEND: str = "local"  # local | s3
    LOCAL_STORAGE_PATH: str = "./data/files"
    PUBLIC_BASE_URL: str = "http://localhost:8000"
    S3_BUCKET: str = "donations"
    S3_REGION: str = "ap-southeast-1"
    S3_PUBLIC_BASE_URL: str = ""
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""

    # SMTP fallback (used field by field when the settings row lacks a value)
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    FROM_EMAIL: str = ""
    FROM_NAME: str = ""
    SMTP_TIMEOUT: float = 60.0
    SMTP_VERIFY_TIMEOUT: float = 30.0

    # Receipt rendering
    RENDER_TIMEOUT_MS: int = 30000
    APPROVAL_TIMEOUT: float = 120.0
    IMAGE_FETCH_TIMEOUT: float = 5.0
    RECEIPT_UTC_OFFSET_HOURS: int = 7
    RECEIPT_ORG_NAME: str = ""
    LOGO_PATH: str = "./static/logo.png"

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
