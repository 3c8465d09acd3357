from __future__ import annotations

import datetime as dt
import json
import logging
import threading
from pathlib import Path
from typing import Any, Iterable, Optional, Protocol

from shipping_hub.errors import ConfigurationError
from shipping_hub.models import Provider


class ProviderRepository(Protocol):
    """What the orchestrator and the connection flow need from provider storage."""

    def get_all_providers(self) -> list[Provider]: ...
    def get_enabled_providers(self) -> list[Provider]: ...
    def get_by_id(self, provider_id: str) -> Optional[Provider]: ...
    def get_by_code(self, code: str) -> Optional[Provider]: ...
    def update(self, provider_id: str, **changes: Any) -> Provider: ...
    def update_auth_token(self, provider_id: str, token: str, expires_at: Optional[dt.datetime]) -> Provider: ...


def _ordered(providers: Iterable[Provider]) -> list[Provider]:
    # lower priority value wins; code/id keep the order stable
    return sorted(providers, key=lambda p: (p.priority, p.code, p.id))


class _BaseProviderRepository:
    """Shared read/write logic; subclasses supply _load() and _store()."""

    def __init__(self) -> None:
        self._lock = threading.RLock()

    def _load(self) -> list[Provider]:
        raise NotImplementedError

    def _store(self, providers: list[Provider]) -> None:
        raise NotImplementedError

    # -- reads -----------------------------------------------------------------

    def get_all_providers(self) -> list[Provider]:
        with self._lock:
            return _ordered(self._load())

    def get_enabled_providers(self) -> list[Provider]:
        return [p for p in self.get_all_providers() if p.is_enabled]

    def get_by_id(self, provider_id: str) -> Optional[Provider]:
        return next((p for p in self.get_all_providers() if p.id == provider_id), None)

    def get_by_code(self, code: str) -> Optional[Provider]:
        key = code.strip().lower()
        return next((p for p in self.get_all_providers() if p.code.lower() == key), None)

    # -- writes (connection flow / admin only) ----------------------------------

    def add(self, provider: Provider) -> Provider:
        with self._lock:
            rows = [p for p in self._load() if p.id != provider.id]
            rows.append(provider)
            self._store(rows)
        return provider

    def update(self, provider_id: str, **changes: Any) -> Provider:
        with self._lock:
            rows = self._load()
            for i, row in enumerate(rows):
                if row.id == provider_id:
                    rows[i] = row.with_changes(**changes)
                    self._store(rows)
                    return rows[i]
        raise ConfigurationError(f"Unknown shipping provider id: {provider_id}")

    def update_auth_token(self, provider_id: str, token: str, expires_at: Optional[dt.datetime]) -> Provider:
        return self.update(provider_id, auth_token=token, token_expires_at=expires_at, auth_error=None)

    def mark_connected(
        self,
        provider_id: str,
        *,
        token: Optional[str],
        expires_at: Optional[dt.datetime],
        config: Optional[dict[str, Any]] = None,
        connected_at: Optional[dt.datetime] = None,
    ) -> Provider:
        changes: dict[str, Any] = {
            "is_connected": True,
            "auth_token": token,
            "token_expires_at": expires_at,
            "connected_at": connected_at or dt.datetime.now(dt.timezone.utc),
            "auth_error": None,
        }
        if config is not None:
            changes["config"] = config
        return self.update(provider_id, **changes)

    def mark_disconnected(self, provider_id: str) -> Provider:
        return self.update(
            provider_id,
            is_connected=False,
            auth_token=None,
            token_expires_at=None,
            connected_at=None,
        )

    def set_enabled(self, provider_id: str, enabled: bool) -> Provider:
        return self.update(provider_id, is_enabled=bool(enabled))

    def record_auth_error(self, provider_id: str, error: str) -> Provider:
        return self.update(provider_id, auth_error=error)


class InMemoryProviderRepository(_BaseProviderRepository):
    def __init__(self, providers: Iterable[Provider] = ()) -> None:
        super().__init__()
        self._rows: dict[str, Provider] = {p.id: p for p in providers}

    def _load(self) -> list[Provider]:
        return list(self._rows.values())

    def _store(self, providers: list[Provider]) -> None:
        self._rows = {p.id: p for p in providers}


class JsonProviderRepository(_BaseProviderRepository):
    """Provider rows kept as a single JSON array on disk.

    File shape:
        [
          {"id": "sr-1", "code": "shiprocket", "name": "Shiprocket",
           "is_enabled": true, "priority": 1, "config": {...}},
          ...
        ]

    Every read goes back to the file so admin edits are seen immediately.
    """

    def __init__(self, path: Path | str, *, logger: Optional[logging.Logger] = None) -> None:
        super().__init__()
        self.path = Path(path)
        self.logger = logger or logging.getLogger("shipping_hub.repository.providers")

    def _load(self) -> list[Provider]:
        if not self.path.exists():
            raise ConfigurationError(f"Providers file not found: {self.path}")
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except json.JSONDecodeError as ex:
            raise ConfigurationError(f"Providers file is not valid JSON: {self.path}: {ex}") from ex

        if not isinstance(data, list):
            raise ConfigurationError(f"Providers file must contain a JSON array: {self.path}")

        rows: list[Provider] = []
        for entry in data:
            try:
                rows.append(Provider.from_dict(entry))
            except (KeyError, TypeError, ValueError) as ex:
                self.logger.warning("Skipping malformed provider row in %s: %s", self.path, ex)
        return rows

    def _store(self, providers: list[Provider]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as fh:
            json.dump([p.to_dict() for p in _ordered(providers)], fh, ensure_ascii=False, indent=2)
        tmp.replace(self.path)
