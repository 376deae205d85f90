from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(60, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # Base URL of the web client; parent approval links point here
    frontend_url: str = Field("http://localhost:5173", alias="FRONTEND_URL")
    # "today" for the security gate is evaluated in this zone
    campus_timezone: str = Field("Asia/Kolkata", alias="CAMPUS_TIMEZONE")

    smtp_host: Optional[str] = Field(None, alias="SMTP_HOST")
    smtp_port: int = Field(587, alias="SMTP_PORT")
    smtp_username: Optional[str] = Field(None, alias="SMTP_USERNAME")
    smtp_password: Optional[str] = Field(None, alias="SMTP_PASSWORD")
    smtp_use_tls: bool = Field(True, alias="SMTP_USE_TLS")
    mail_from: str = Field("no-reply@campus.local", alias="MAIL_FROM")

    leave_otp_ttl_minutes: int = Field(5, alias="LEAVE_OTP_TTL_MINUTES")
    leave_otp_length: int = Field(6, alias="LEAVE_OTP_LENGTH")
    # mentor | student
    leave_otp_delivery: str = Field("mentor", alias="LEAVE_OTP_DELIVERY")

    enrollment_max_changes: int = Field(2, alias="ENROLLMENT_MAX_CHANGES")
    enrollment_freeze_hours: int = Field(24, alias="ENROLLMENT_FREEZE_HOURS")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
