"""
Relay settings from environment variables
"""
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .utils import generate_access_key


@dataclass
class Settings:
    access_key: str
    port: int = 3000
    host: str = "0.0.0.0"
    log_level: str = "INFO"
    heartbeat: Optional[float] = 20.0
    # True when no ACCESS_KEY was configured
    generated_key: bool = False


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Read ACCESS_KEY, PORT, SERVER_HOST, LOG_LEVEL and WS_HEARTBEAT"""
    env = os.environ if environ is None else environ

    access_key = env.get("ACCESS_KEY", "")
    generated = not access_key
    if generated:
        access_key = generate_access_key()

    heartbeat = float(env.get("WS_HEARTBEAT", "20"))

    return Settings(
        access_key=access_key,
        port=int(env.get("PORT", 3000)),
        host=env.get("SERVER_HOST", "0.0.0.0"),
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
        heartbeat=heartbeat if heartbeat > 0 else None,
        generated_key=generated,
    )
