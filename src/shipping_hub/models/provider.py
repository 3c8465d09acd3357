from __future__ import annotations

import datetime as dt
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Mapping, Optional

from shipping_hub.utils.pincode import normalize_pincode


def _parse_dt(value: Any) -> Optional[dt.datetime]:
    if value in (None, ""):
        return None
    if isinstance(value, dt.datetime):
        out = value
    else:
        out = dt.datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if out.tzinfo is None:
        out = out.replace(tzinfo=dt.timezone.utc)
    return out


@dataclass(frozen=True)
class Provider:
    """A configured carrier account, as stored by the admin back-office."""

    id: str
    code: str
    name: str
    is_enabled: bool = False
    is_connected: bool = False
    priority: int = 100
    supported_modes: frozenset[str] = frozenset({"prepaid", "cod"})
    # empty means every pincode is allowed
    serviceable_pincodes: tuple[str, ...] = ()
    config: Mapping[str, Any] = field(default_factory=dict)
    connected_at: Optional[dt.datetime] = None
    auth_token: Optional[str] = None
    token_expires_at: Optional[dt.datetime] = None
    auth_error: Optional[str] = None
    timeout_seconds: Optional[float] = None

    def token_valid(self, now: Optional[dt.datetime] = None) -> bool:
        if not self.auth_token:
            return False
        if self.token_expires_at is None:
            return True
        now = now or dt.datetime.now(dt.timezone.utc)
        return now < self.token_expires_at

    def is_dispatchable(self, now: Optional[dt.datetime] = None) -> bool:
        """Enabled, connected and holding a live token."""
        return self.is_enabled and self.is_connected and self.token_valid(now)

    def supports_mode(self, mode: object) -> bool:
        if not self.supported_modes:
            return True
        return str(mode).lower() in {m.lower() for m in self.supported_modes}

    def can_service(self, pincode: object) -> bool:
        if not self.serviceable_pincodes:
            return True
        return normalize_pincode(pincode) in self.serviceable_pincodes

    def with_changes(self, **changes: Any) -> "Provider":
        return replace(self, **changes)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Provider":
        """Build from a stored row; accepts snake_case or the admin UI's camelCase keys."""
        def pick(snake: str, camel: str, default: Any = None) -> Any:
            if snake in data:
                return data[snake]
            return data.get(camel, default)

        modes = pick("supported_modes", "supportedModes") or ("prepaid", "cod")
        pins = pick("serviceable_pincodes", "serviceablePincodes") or ()
        timeout = pick("timeout_seconds", "timeoutSeconds")
        return cls(
            id=str(data["id"]),
            code=str(data["code"]),
            name=str(data.get("name") or data["code"]),
            is_enabled=bool(pick("is_enabled", "isEnabled", False)),
            is_connected=bool(pick("is_connected", "isConnected", False)),
            priority=int(pick("priority", "priority", 100)),
            supported_modes=frozenset(str(m).lower() for m in modes),
            serviceable_pincodes=tuple(normalize_pincode(p) for p in pins),
            config=dict(pick("config", "config") or {}),
            connected_at=_parse_dt(pick("connected_at", "connectedAt")),
            auth_token=pick("auth_token", "authToken"),
            token_expires_at=_parse_dt(pick("token_expires_at", "tokenExpiresAt")),
            auth_error=pick("auth_error", "authError"),
            timeout_seconds=float(timeout) if timeout is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["supported_modes"] = sorted(self.supported_modes)
        out["serviceable_pincodes"] = list(self.serviceable_pincodes)
        out["config"] = dict(self.config)
        for key in ("connected_at", "token_expires_at"):
            if out[key] is not None:
                out[key] = out[key].isoformat()
        return out


@dataclass(frozen=True)
class ProviderSummary:
    id: str
    code: str
    name: str
    priority: int

    @classmethod
    def of(cls, provider: Provider) -> "ProviderSummary":
        return cls(id=provider.id, code=provider.code, name=provider.name, priority=provider.priority)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
