from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    database_url: str
    redis_url: str | None = None  # unset = caching and rate limiting disabled (fail-open)
    cache_prefix: str = "affiliate-links"

    log_level: str = "INFO"

    # Link clicks: 1 per minute per IP and link
    click_rate_limit_max: int = 1
    click_rate_limit_window_seconds: int = 60
    # Link reports: 5 per hour per IP
    report_rate_limit_max: int = 5
    report_rate_limit_window_seconds: int = 3600

    health_check_timeout_seconds: float = 10.0
    admin_token: str | None = None

settings = Settings()
