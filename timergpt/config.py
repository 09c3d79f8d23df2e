"""Service configuration loaded from the environment."""
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv
load_dotenv(override=True)


@dataclass
class Settings:
    """Service settings."""

    # HTTP server
    host: str = "0.0.0.0"
    port: int = 2091
    debug: bool = False
    log_level: str = "INFO"

    # Timer snapshot location
    storage_path: Path = field(default_factory=lambda: Path.home() / ".timergpt" / "timers.json")

    # Maximum simultaneously active timers
    max_concurrent: int = 5

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables."""
        debug = os.getenv("DEBUG", "").lower() in ("1", "true")
        return cls(
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "2091")),
            debug=debug,
            log_level=os.getenv("TIMERGPT_LOG_LEVEL", "DEBUG" if debug else "INFO").upper(),
            storage_path=Path(os.getenv(
                "TIMERGPT_STORAGE_PATH", str(Path.home() / ".timergpt" / "timers.json")
            )).expanduser(),
            max_concurrent=int(os.getenv("TIMERGPT_MAX_CONCURRENT", "5")),
        )


# Global settings instance
settings = Settings.from_env()
