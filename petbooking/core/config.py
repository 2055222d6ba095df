from typing import Optional

from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings


class BusinessHoursConfig(BaseModel):
    """Business-day shape shared by every slot and date computation."""

    timezone: str = "America/Sao_Paulo"
    business_start: int = 9
    business_end: int = 17
    saturday_end: int = 12
    step_minutes: int = 10
    anchor_minutes: int = 30
    closed_weekdays: frozenset[int] = frozenset({6})  # Sunday
    holiday_country: Optional[str] = None

    @field_validator("anchor_minutes")
    @classmethod
    def anchor_must_be_multiple_of_step(cls, v, info):
        step = info.data.get("step_minutes", 10)
        if v % step != 0:
            raise ValueError("anchor_minutes must be a multiple of step_minutes")
        return v

    @property
    def skip_sunday(self) -> bool:
        return 6 in self.closed_weekdays


class Settings(BaseSettings):
    """Application settings."""

    # Basic settings
    PROJECT_NAME: str = "Pet Booking"
    VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./petbooking.db"

    # Redis (booking in-flight guard is disabled when unset)
    REDIS_URL: Optional[str] = None

    # CORS
    ALLOWED_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:8080"]

    @field_validator("ALLOWED_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v):
        if isinstance(v, str):
            return [i.strip() for i in v.split(",")]
        return v

    # Celery
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/1"

    # Business hours
    BUSINESS_TIMEZONE: str = "America/Sao_Paulo"
    BUSINESS_START_HOUR: int = 9
    BUSINESS_END_HOUR: int = 17
    SATURDAY_END_HOUR: int = 12
    SLOT_STEP_MINUTES: int = 10
    ANCHOR_MINUTES: int = 30
    # Comma separated weekday numbers, Monday=0 ... Sunday=6
    CLOSED_WEEKDAYS: str = "6"
    HOLIDAY_COUNTRY: Optional[str] = None

    # Availability rolling window (days ahead of today)
    AVAILABILITY_HORIZON_DAYS: int = 90

    # Booking in-flight lock expiry
    BOOKING_LOCK_SECONDS: int = 30

    # Logging
    LOG_LEVEL: str = "INFO"

    model_config = {"env_file": ".env", "case_sensitive": True}

    @property
    def business_hours(self) -> BusinessHoursConfig:
        return BusinessHoursConfig(
            timezone=self.BUSINESS_TIMEZONE,
            business_start=self.BUSINESS_START_HOUR,
            business_end=self.BUSINESS_END_HOUR,
            saturday_end=self.SATURDAY_END_HOUR,
            step_minutes=self.SLOT_STEP_MINUTES,
            anchor_minutes=self.ANCHOR_MINUTES,
            closed_weekdays=frozenset(
                int(day) for day in self.CLOSED_WEEKDAYS.split(",") if day.strip()
            ),
            holiday_country=self.HOLIDAY_COUNTRY,
        )


# Global settings instance
settings = Settings()
