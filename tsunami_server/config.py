"""Server settings, read from the environment (and a local .env file)."""

import os
from dataclasses import dataclass

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 8765
    min_players: int = 2
    max_players: int = 5
    # Seconds a finished room stays around so clients can see the final state
    cleanup_delay: float = 30.0
    log_level: str = "INFO"


def load_settings():
    """Build Settings from TSUNAMI_* environment variables."""
    load_dotenv()
    defaults = Settings()
    return Settings(
        host=os.getenv("TSUNAMI_HOST", defaults.host),
        port=int(os.getenv("TSUNAMI_PORT", defaults.port)),
        min_players=int(os.getenv("TSUNAMI_MIN_PLAYERS", defaults.min_players)),
        max_players=int(os.getenv("TSUNAMI_MAX_PLAYERS", defaults.max_players)),
        cleanup_delay=float(os.getenv("TSUNAMI_CLEANUP_DELAY", defaults.cleanup_delay)),
        log_level=os.getenv("TSUNAMI_LOG_LEVEL", defaults.log_level).upper(),
    )
