"""
Configuration management for BSOD fact extraction.

Loads settings from environment variables and .env file.
"""

from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv


class Config(BaseSettings):
    """Application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="BSOD_FACTS_",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging configuration
    log_level: str = "INFO"
    log_file: Optional[str] = None

    # Input limits
    max_dump_size_mb: int = 64

    # Extraction configuration
    module_limit: int = 100
    module_scan_bytes: int = 512 * 1024
    bugcheck_scan_bytes: int = 4096

    # Additions to the built-in lists of fabricated values
    extra_fabricated_module_names: List[str] = []
    extra_fabricated_bug_check_codes: List[int] = []

    def get_max_dump_size(self) -> int:
        """Get the dump size ceiling in bytes."""
        return self.max_dump_size_mb * 1024 * 1024


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get global configuration instance."""
    global _config
    if _config is None:
        load_dotenv()
        _config = Config()
    return _config


def reload_config() -> Config:
    """Reload configuration from environment."""
    global _config
    load_dotenv(override=True)
    _config = Config()
    return _config
