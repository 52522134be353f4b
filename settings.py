# settings.py
import os
from dataclasses import dataclass
from typing import Optional

# -----------------------
# Basic config
# -----------------------
DEFAULT_SHARE_DIR = "shared-files"


@dataclass(frozen=True)
class Settings:
    share_root: str = DEFAULT_SHARE_DIR
    host: str = "0.0.0.0"
    port: int = 3000
    probe_timeout_ms: int = 200
    max_workers: int = 32
    sweep_timeout: float = 30.0
    command_timeout: float = 10.0
    max_upload_mb: int = 100
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


def load_settings() -> Settings:
    """
    Build Settings from LANSHARE_* environment variables.
    The share root is made absolute but not created here.
    """
    root = os.getenv("LANSHARE_ROOT") or DEFAULT_SHARE_DIR
    return Settings(
        share_root=os.path.abspath(root),
        host=os.getenv("LANSHARE_HOST", "0.0.0.0"),
        port=_env_int("LANSHARE_PORT", 3000),
        probe_timeout_ms=_env_int("LANSHARE_PROBE_TIMEOUT_MS", 200),
        max_workers=_env_int("LANSHARE_MAX_WORKERS", 32),
        sweep_timeout=_env_float("LANSHARE_SWEEP_TIMEOUT", 30.0),
        command_timeout=_env_float("LANSHARE_COMMAND_TIMEOUT", 10.0),
        max_upload_mb=_env_int("LANSHARE_MAX_UPLOAD_MB", 100),
        log_level=(os.getenv("LANSHARE_LOG_LEVEL") or "INFO").upper(),
        log_file=os.getenv("LANSHARE_LOG_FILE") or None,
    )
