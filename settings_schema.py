from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ValidationError, field_validator


class SettingsSchema(BaseModel):
    timezone: str = "Australia/Sydney"
    default_target_sets: int = 3
    seed_sets: int = 3
    analytics_weeks: int = 12
    quick_log_template: str = "Quick Log"
    log_level: str = "INFO"
    revalidate_webhook_url: str | None = None
    revalidate_secret: str | None = None

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown timezone: {value}") from e
        return value

    @field_validator("default_target_sets", "seed_sets")
    @classmethod
    def _set_count(cls, value: int) -> int:
        if value < 0 or value > 20:
            raise ValueError("set counts must be between 0 and 20")
        return value

    @field_validator("analytics_weeks")
    @classmethod
    def _weeks(cls, value: int) -> int:
        if value < 4 or value > 52:
            raise ValueError("analytics_weeks must be between 4 and 52")
        return value

    @field_validator("log_level")
    @classmethod
    def _level(cls, value: str) -> str:
        value = value.upper()
        if value not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {value}")
        return value


def validate_settings(data: dict) -> None:
    try:
        SettingsSchema(**data)
    except ValidationError as e:
        raise ValueError(str(e))
