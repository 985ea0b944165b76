"""
Centralized settings and path configuration for the pricing core.
"""
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo

from dotenv import load_dotenv


def get_project_root() -> Path:
    """Get the project root directory (where pyproject.toml lives)."""
    current = Path(__file__).resolve()
    for parent in current.parents:
        if (parent / 'pyproject.toml').exists():
            return parent
    # Fallback to 4 levels up from this file
    return Path(__file__).resolve().parent.parent.parent.parent


@dataclass
class Settings:
    """Application settings with sensible defaults."""

    project_root: Path
    database_url: str

    # Clock used for "now" when a caller does not pass an instant
    timezone: str = 'UTC'

    currency_decimals: int = 2
    log_level: str = 'INFO'

    # How many revisions the history view returns by default
    history_limit: int = 20

    @property
    def log_format(self) -> str:
        return "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    def now(self) -> datetime:
        """Current instant in the configured timezone."""
        return datetime.now(ZoneInfo(self.timezone))

    @classmethod
    def load(cls, project_root: Optional[Path] = None) -> 'Settings':
        """Load settings from the environment (and a .env file at the project root)."""
        root = project_root or get_project_root()

        env_path = root / '.env'
        if env_path.exists():
            load_dotenv(dotenv_path=env_path)

        database_url = os.getenv('KIOSK_PRICING_DATABASE_URL')
        if not database_url:
            data_dir = root / 'data'
            data_dir.mkdir(parents=True, exist_ok=True)
            database_url = f"sqlite:///{data_dir / 'kiosk_pricing.db'}"

        return cls(
            project_root=root,
            database_url=database_url,
            timezone=os.getenv('KIOSK_PRICING_TIMEZONE', 'UTC'),
            currency_decimals=int(os.getenv('KIOSK_PRICING_CURRENCY_DECIMALS', '2')),
            log_level=os.getenv('KIOSK_PRICING_LOG_LEVEL', 'INFO').upper(),
            history_limit=int(os.getenv('KIOSK_PRICING_HISTORY_LIMIT', '20')),
        )


# Default settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings
