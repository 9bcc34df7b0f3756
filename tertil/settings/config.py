# tertil/settings/config.py  (Pydantic v2)
from typing import Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    # ---------- Reservation engine ----------
    # how many times a join/complete re-reads the program after losing a write race
    JOIN_MAX_RETRIES: int = Field(default=3, ge=1, env=["JOIN_MAX_RETRIES", "TERTIL_JOIN_MAX_RETRIES"])
    MAX_SECTIONS: int = Field(default=1000, ge=1, env=["MAX_SECTIONS"])
    # appended to the first letter of every word when a caller may not see full names
    NAME_MASK: str = Field(default="***", env=["NAME_MASK"])

    # ---------- App ----------
    LOG_LEVEL: str = Field(default="INFO", env=["LOG_LEVEL"])
    BASE_URL: str = Field(default="http://localhost:8000", env=["BASE_URL", "PUBLIC_URL"])
    APP_NAME: str = Field(default="Tertil", env=["APP_NAME"])

    # ---------- pydantic-settings config ----------
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,  # allow lower/upper env names
        extra="ignore",
    )

    # ---------- Email / SMTP ----------
    EMAIL_TRANSPORT: Literal["smtp", "dummy"] = Field(
        default="smtp",
        env=["EMAIL_TRANSPORT"],
    )
    SMTP_HOST: str = Field(default="smtp.gmail.com", env=["SMTP_HOST"])
    SMTP_PORT: int = Field(default=587, env=["SMTP_PORT"])
    SMTP_USERNAME: Optional[str] = Field(default=None, env=["SMTP_USERNAME"])
    SMTP_PASSWORD: Optional[str] = Field(default=None, env=["SMTP_PASSWORD"])
    SMTP_FROM: Optional[str] = Field(default=None, env=["SMTP_FROM"])
    SMTP_USE_TLS: bool = Field(default=True, env=["SMTP_USE_TLS"])
    SMTP_USE_SSL: bool = Field(default=False, env=["SMTP_USE_SSL"])

settings = Settings()
