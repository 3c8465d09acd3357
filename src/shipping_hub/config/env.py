# src/shipping_hub/config/env.py
from __future__ import annotations

import os
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

from dotenv import dotenv_values, find_dotenv, load_dotenv

from shipping_hub.errors import ConfigurationError
from shipping_hub.models import EnvCfg
from shipping_hub.services.selector import STRATEGIES
from shipping_hub.utils.pincode import is_valid_pincode, normalize_pincode


# --- Public contract ---------------------------------------------------------

class EnvError(ConfigurationError):
    """Raised when required environment variables are missing or malformed."""


REQUIRED_KEYS: Tuple[str, ...] = (
    "SHIPPING_PROVIDERS_FILE",
)


def load_project_dotenv(start: Optional[Path] = None, *, override: bool = False) -> Path:
    """
    Load variables from the nearest `.env` file (searching upward from `start` or CWD).
    Does NOT override existing env vars unless `override=True`.
    Returns the resolved Path to the .env file if found; otherwise Path().
    """
    start_path = Path.cwd() if start is None else Path(start)

    dotenv_str = find_dotenv(filename=".env", usecwd=True)
    dotenv_path = Path(dotenv_str) if dotenv_str else Path()

    if not dotenv_str:
        for p in (start_path, *start_path.parents):
            candidate = p / ".env"
            if candidate.exists():
                dotenv_path = candidate
                break

    if not dotenv_path.exists() or dotenv_path.is_dir():
        return Path()

    load_dotenv(dotenv_path=dotenv_path, override=override)
    return dotenv_path.resolve()


def env(name: str, *, default: Optional[str] = None, required: bool = False,
        cast: Optional[Callable[[str], object]] = None):
    """
    Test-friendly accessor.

    - If `required=True` and var is missing, raise KeyError(name).
    - If `cast` is provided, apply it to the raw string and propagate cast errors.
    - Returns `default` when missing and not required.
    """
    raw = os.getenv(name)
    if raw is None or raw == "":
        if required:
            raise KeyError(name)
        return default

    if cast is not None:
        return cast(raw)
    return raw


def load_env(
    dotenv_path: Optional[Path] = None,
    *,
    override: bool = False,
    required_keys: Tuple[str, ...] = (),
    strict: bool = False,
) -> Dict[str, Optional[str]]:
    """
    Load a .env file into the process environment and return the pairs it defined.

    - If `dotenv_path` is provided, load exactly that file.
    - Otherwise, auto-discover the nearest .env via `load_project_dotenv`.
    - If `strict=True`, every key in `required_keys` must be set afterwards.
    """
    loaded: Dict[str, Optional[str]] = {}

    if dotenv_path:
        path = Path(dotenv_path)
        if path.exists():
            load_dotenv(dotenv_path=path, override=override)
            loaded = dict(dotenv_values(path))
    else:
        path = load_project_dotenv(override=override)
        if path and path.exists():
            loaded = dict(dotenv_values(path))

    if strict and required_keys:
        missing = [k for k in required_keys if not os.getenv(k)]
        if missing:
            raise EnvError(
                f"Missing required environment variable(s): {', '.join(missing)}")

    return loaded


def _float_env(name: str, default: float) -> float:
    try:
        value = env(name, default=None, cast=float)
    except ValueError as ex:
        raise EnvError(f"{name} must be a number, got {os.getenv(name)!r}") from ex
    return default if value is None else float(value)


def get_app_env(dotenv_path: Path | str | None = ".env", *, strict: bool = True) -> EnvCfg:
    """
    Load shipping settings and return a typed config object.

    - `dotenv_path` may point to a specific .env file, or be None to skip
      file loading (useful for tests).
    - Existing process env wins over the file (CI/host settings first).
    - With `strict=True` REQUIRED_KEYS must be present.
    """
    load_env(
        Path(dotenv_path) if dotenv_path else None,
        override=False,
        required_keys=REQUIRED_KEYS,
        strict=strict,
    )

    warehouse = env("SHIPPING_WAREHOUSE_PINCODE", default="") or ""
    if warehouse and not is_valid_pincode(warehouse):
        raise EnvError(f"SHIPPING_WAREHOUSE_PINCODE must be a 6-digit pincode, got {warehouse!r}")

    strategy = (env("SHIPPING_DEFAULT_STRATEGY", default="balanced") or "balanced").strip().lower()
    if strategy not in STRATEGIES:
        raise EnvError(f"SHIPPING_DEFAULT_STRATEGY must be one of {', '.join(STRATEGIES)}, got {strategy!r}")

    timeout = _float_env("SHIPPING_PROVIDER_TIMEOUT", 8.0)
    if timeout <= 0:
        raise EnvError("SHIPPING_PROVIDER_TIMEOUT must be positive")

    return EnvCfg(
        SHIPPING_PROVIDERS_FILE=env("SHIPPING_PROVIDERS_FILE", default="") or "",
        SHIPPING_WAREHOUSE_PINCODE=normalize_pincode(warehouse) if warehouse else "",
        SHIPPING_PROVIDER_TIMEOUT=timeout,
        SHIPPING_RATE_CACHE_TTL=_float_env("SHIPPING_RATE_CACHE_TTL", 300.0),
        SHIPPING_DEFAULT_STRATEGY=strategy,
        SHIPPING_EVENTS_FILE=env("SHIPPING_EVENTS_FILE", default="") or "",
    )


__all__ = [
    "EnvError",
    "REQUIRED_KEYS",
    "load_project_dotenv",
    "load_env",
    "env",
    "get_app_env",
]
