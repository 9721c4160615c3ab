"""
Configuration management using environment variables.
Handles database, source feed, mail and scheduling settings with validation and defaults.
"""

import json
from typing import Dict, Optional
from pathlib import Path

from pydantic import validator
from pydantic_settings import BaseSettings


class AppConfig(BaseSettings):
    """
    Configuration class for the alumni tracker.
    Uses pydantic BaseSettings for environment variable management.
    """

    # MongoDB Configuration
    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_database: str = "alumni_tracker"
    alumni_collection: str = "alumnis"
    previous_alumni_collection: str = "prevalumnis"
    company_collection: str = "ezens"
    subscriber_collection: str = "subscribers"
    lock_collection: str = "cycle_locks"

    # Source feed Configuration
    company_feed_url: Optional[str] = None
    alumni_feed_url: Optional[str] = None
    request_timeout: int = 30
    retry_attempts: int = 3
    retry_delay: float = 1.0
    rate_limit_per_second: float = 2.0

    # Mail Configuration
    resend_api_url: str = "https://api.resend.com/emails"
    resend_api_key: str = ""
    mail_from: str = "onboarding@resend.dev"
    mail_rate_limit_per_second: float = 2.0

    # Directory Configuration (JSON object: uid -> {"email": ..., "name": ...})
    directory_entries: str = "{}"

    # Logging Configuration
    log_level: str = "INFO"
    log_format: str = "json"
    log_file: Optional[str] = None

    # Development/Testing
    debug: bool = False
    test_mode: bool = False

    # Scheduler Configuration (monthly cron)
    schedule_day: int = 1
    schedule_hour: int = 0
    schedule_minute: int = 0
    timezone: str = "America/Los_Angeles"
    cycle_lease_seconds: int = 6 * 3600
    timer_sync_interval_seconds: int = 300

    @validator('request_timeout')
    def validate_timeout(cls, v):
        """Ensure timeout is reasonable."""
        if v < 5 or v > 300:
            raise ValueError('request_timeout must be between 5 and 300 seconds')
        return v

    @validator('retry_attempts')
    def validate_retry_attempts(cls, v):
        """Ensure retry attempts is reasonable."""
        if v < 0 or v > 10:
            raise ValueError('retry_attempts must be between 0 and 10')
        return v

    @validator('rate_limit_per_second', 'mail_rate_limit_per_second')
    def validate_rate_limit(cls, v):
        """Ensure rate limit is reasonable."""
        if v < 0.1 or v > 10:
            raise ValueError('rate limit must be between 0.1 and 10 per second')
        return v

    @validator('schedule_day')
    def validate_schedule_day(cls, v):
        # day 29-31 would silently skip short months
        if v < 1 or v > 28:
            raise ValueError('schedule_day must be between 1 and 28')
        return v

    @validator('schedule_hour')
    def validate_schedule_hour(cls, v):
        if v < 0 or v > 23:
            raise ValueError('schedule_hour must be between 0 and 23')
        return v

    @validator('schedule_minute')
    def validate_schedule_minute(cls, v):
        if v < 0 or v > 59:
            raise ValueError('schedule_minute must be between 0 and 59')
        return v

    @validator('cycle_lease_seconds', 'timer_sync_interval_seconds')
    def validate_positive_interval(cls, v):
        if v < 60:
            raise ValueError('interval must be at least 60 seconds')
        return v

    @validator('log_level')
    def validate_log_level(cls, v):
        """Ensure log level is valid."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'log_level must be one of: {valid_levels}')
        return v.upper()

    @validator('log_format')
    def validate_log_format(cls, v):
        """Ensure log format is valid."""
        valid_formats = ['json', 'console']
        if v.lower() not in valid_formats:
            raise ValueError(f'log_format must be one of: {valid_formats}')
        return v.lower()

    @validator('directory_entries')
    def validate_directory_entries(cls, v):
        """Ensure directory entries decode to a JSON object."""
        try:
            decoded = json.loads(v)
        except json.JSONDecodeError as e:
            raise ValueError(f'directory_entries must be valid JSON: {e}')
        if not isinstance(decoded, dict):
            raise ValueError('directory_entries must be a JSON object')
        return v

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",  # Ignore extra fields from .env
    }

    def get_log_file_path(self) -> Optional[Path]:
        """Get log file path as Path object."""
        if self.log_file:
            return Path(self.log_file)
        return None

    def get_directory_entries(self) -> Dict[str, Dict[str, str]]:
        """Decoded directory entries keyed by uid."""
        return json.loads(self.directory_entries)

    def schedule_suppressed(self) -> bool:
        """The recurring schedule never fires in test mode."""
        return self.test_mode

    def get_user_agent(self) -> str:
        """Get user agent string for requests."""
        return "AlumniTracker-Refresher/1.0"

    def get_headers(self) -> dict:
        """Get default headers for HTTP requests."""
        return {
            "User-Agent": self.get_user_agent(),
            "Accept": "application/json",
            "Accept-Encoding": "gzip, deflate",
            "Connection": "keep-alive",
        }


# Global configuration instance
config = AppConfig()
