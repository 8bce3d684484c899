from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_CALC_TIMEZONE = "Europe/Berlin"


class Settings(BaseSettings):
    app_name: str = "TimeCalc"
    calc_timezone: str = DEFAULT_CALC_TIMEZONE
    recalc_max_workers: int = 4
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()


def get_recalc_max_workers() -> int:
    return max(1, get_settings().recalc_max_workers)


def get_log_level() -> str:
    raw = (get_settings().log_level or "").strip().upper()
    return raw or "INFO"
