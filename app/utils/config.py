"""
Configuration management for the File Ingest Agent.

Uses pydantic-settings to load configuration from environment variables
and .env files. List and mapping fields are given as JSON, e.g.

    TARGET_FOLDERS='["/data/in"]'
    RULES='[{"pattern": "^LOG_\\\\d+\\\\.txt$", "destination": "/data/out"}]'
"""

from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from app.models.schemas import Rule, UploadRoute


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # API Configuration
    api_port: int = 8000
    api_title: str = "File Ingest Agent"
    api_version: str = "1.0.0"
    auto_start: bool = True
    cors_origins: List[str] = ["http://localhost:8000", "http://127.0.0.1:8000"]

    # Logging Configuration
    log_level: str = "INFO"
    log_dir: Path = Path("logs")
    log_rotation: str = "5 MB"
    debug_mode: bool = False

    # Classification
    target_folders: List[Path] = []
    exclude_folders: List[Path] = []
    rules: List[Rule] = []

    # Baseline correlation
    baseline_enabled: bool = True
    base_folder: Optional[Path] = None
    baseline_source_folder: Optional[Path] = None
    compare_folders: List[Path] = []
    baseline_wait_timeout: float = 180.0  # seconds
    baseline_poll_interval: float = 0.3
    baseline_date_pattern: str = (
        r"Date and Time:\s*(\d{2}/\d{2}/\d{4} \d{2}:\d{2}:\d{2} (?:AM|PM))"
    )
    baseline_date_format: str = "%m/%d/%Y %I:%M:%S %p"
    placeholder_token: str = "_#1_"

    # Baseline retention (0 disables the cleaner)
    baseline_retention_days: int = 0
    retention_scan_interval: float = 300.0

    # Upload / dispatch
    upload_routes: List[UploadRoute] = []
    dispatch_poll_interval: float = 0.3

    # Plugins
    plugin_library_dir: Path = Path("library")
    plugin_registry_file: Path = Path("library/plugins.json")
    plugin_drop_folder: Path = Path("plugins")  # POST /plugins only accepts modules from here
    plugins: Dict[str, Path] = {}
    plugin_config_path: Path = Path(".env")

    # Image to PDF merge (disabled without a merge folder)
    image_merge_folder: Optional[Path] = None
    image_output_folder: Optional[Path] = None
    image_merge_quiet_seconds: float = 30.0
    image_extensions: List[str] = [".jpg", ".jpeg", ".png", ".tif", ".tiff"]

    # File stability and readiness
    stability_poll_interval: float = 2.0
    stability_quiet_seconds: float = 2.0
    duplicate_event_window: float = 5.0
    ready_max_retries: int = 10
    ready_retry_delay: float = 0.5  # seconds

    # Worker Configuration
    worker_threads: int = 4

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def get_target_folders(self) -> List[Path]:
        """Target folders with user home expanded."""
        return [Path(p).expanduser() for p in self.target_folders]

    def get_exclude_folders(self) -> List[Path]:
        """Exclude folders with user home expanded."""
        return [Path(p).expanduser() for p in self.exclude_folders]

    def get_compare_folders(self) -> List[Path]:
        """Comparison folders with user home expanded."""
        return [Path(p).expanduser() for p in self.compare_folders]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
