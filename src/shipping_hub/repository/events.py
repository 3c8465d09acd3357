from __future__ import annotations

import datetime as dt
import json
import logging
import threading
from collections import Counter
from pathlib import Path
from typing import Any, Iterable, Optional, Protocol

from shipping_hub.errors import ConfigurationError
from shipping_hub.models.events import FAILED, PENDING, SUCCESS, ShippingEvent

DEFAULT_RETENTION_DAYS = 90


class EventRepository(Protocol):
    """Where the orchestrator records provider interactions."""

    def record(self, event: ShippingEvent) -> ShippingEvent: ...


def _newest_first(events: Iterable[ShippingEvent]) -> list[ShippingEvent]:
    return sorted(events, key=lambda e: e.created_at, reverse=True)


class _BaseEventRepository:
    """Shared query and reporting logic; subclasses supply _load() and _store()."""

    def __init__(self) -> None:
        self._lock = threading.RLock()

    def _load(self) -> list[ShippingEvent]:
        raise NotImplementedError

    def _store(self, events: list[ShippingEvent]) -> None:
        raise NotImplementedError

    # -- writes ----------------------------------------------------------------

    def record(self, event: ShippingEvent) -> ShippingEvent:
        self.record_many([event])
        return event

    def record_many(self, events: Iterable[ShippingEvent]) -> int:
        new = list(events)
        if not new:
            return 0
        with self._lock:
            self._store(self._load() + new)
        return len(new)

    def purge_older_than(self, days: int = DEFAULT_RETENTION_DAYS, *, now: Optional[dt.datetime] = None) -> int:
        cutoff = (now or dt.datetime.now(dt.timezone.utc)) - dt.timedelta(days=days)
        return self._delete_where(lambda e: e.created_at < cutoff)

    def delete_by_order(self, order_id: str) -> int:
        return self._delete_where(lambda e: e.order_id == order_id)

    def _delete_where(self, predicate) -> int:
        with self._lock:
            rows = self._load()
            keep = [e for e in rows if not predicate(e)]
            if len(keep) != len(rows):
                self._store(keep)
        return len(rows) - len(keep)

    # -- queries ---------------------------------------------------------------

    def all_events(self) -> list[ShippingEvent]:
        with self._lock:
            return _newest_first(self._load())

    def by_order(self, order_id: str) -> list[ShippingEvent]:
        return [e for e in self.all_events() if e.order_id == order_id]

    def by_provider(self, provider_id: str, limit: int = 100) -> list[ShippingEvent]:
        return [e for e in self.all_events() if e.provider_id == provider_id][:limit]

    def by_type(self, event_type: str, limit: int = 100) -> list[ShippingEvent]:
        return [e for e in self.all_events() if e.event_type == event_type][:limit]

    def failed_events(self, limit: int = 50) -> list[ShippingEvent]:
        return [e for e in self.all_events() if e.failed][:limit]

    def recent(
        self,
        *,
        skip: int = 0,
        take: int = 50,
        provider_id: Optional[str] = None,
        event_type: Optional[str] = None,
        status: Optional[str] = None,
    ) -> tuple[list[ShippingEvent], int]:
        """One page of matching events, newest first, plus the total match count."""
        matches = [
            e for e in self.all_events()
            if (provider_id is None or e.provider_id == provider_id)
            and (event_type is None or e.event_type == event_type)
            and (status is None or e.status == status)
        ]
        return matches[skip:skip + take], len(matches)

    def last_event(self, order_id: str) -> Optional[ShippingEvent]:
        events = self.by_order(order_id)
        return events[0] if events else None

    def has_events(self, order_id: str) -> bool:
        return self.last_event(order_id) is not None

    def count_between(
        self,
        start: dt.datetime,
        end: dt.datetime,
        *,
        provider_id: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> int:
        return sum(
            1 for e in self.all_events()
            if start <= e.created_at <= end
            and (provider_id is None or e.provider_id == provider_id)
            and (event_type is None or e.event_type == event_type)
        )

    # -- reporting -------------------------------------------------------------

    def provider_stats(self, provider_id: str) -> dict[str, Any]:
        events = [e for e in self.all_events() if e.provider_id == provider_id]
        statuses = Counter(e.status for e in events)
        return {
            "providerId": provider_id,
            "total": len(events),
            "success": statuses[SUCCESS],
            "failed": statuses[FAILED],
            "pending": statuses[PENDING],
            "failureRate": self.failure_rate(provider_id),
            "byEventType": dict(Counter(e.event_type for e in events)),
        }

    def failure_rate(self, provider_id: str, since: Optional[dt.datetime] = None) -> float:
        """Failed share of the provider's events as a percentage; 0.0 with no events."""
        events = [
            e for e in self.all_events()
            if e.provider_id == provider_id and (since is None or e.created_at >= since)
        ]
        if not events:
            return 0.0
        return round(100.0 * sum(1 for e in events if e.failed) / len(events), 2)


class InMemoryEventRepository(_BaseEventRepository):
    def __init__(self, events: Iterable[ShippingEvent] = ()) -> None:
        super().__init__()
        self._rows: list[ShippingEvent] = list(events)

    def _load(self) -> list[ShippingEvent]:
        return list(self._rows)

    def _store(self, events: list[ShippingEvent]) -> None:
        self._rows = list(events)


class JsonEventRepository(_BaseEventRepository):
    """Event log kept as a single JSON array on disk; a missing file is an empty log."""

    def __init__(self, path: Path | str, *, logger: Optional[logging.Logger] = None) -> None:
        super().__init__()
        self.path = Path(path)
        self.logger = logger or logging.getLogger("shipping_hub.repository.events")

    def _load(self) -> list[ShippingEvent]:
        if not self.path.exists():
            return []
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except json.JSONDecodeError as ex:
            raise ConfigurationError(f"Events file is not valid JSON: {self.path}: {ex}") from ex

        if not isinstance(data, list):
            raise ConfigurationError(f"Events file must contain a JSON array: {self.path}")

        rows: list[ShippingEvent] = []
        for entry in data:
            try:
                rows.append(ShippingEvent.from_dict(entry))
            except (KeyError, TypeError, ValueError) as ex:
                self.logger.warning("Skipping malformed event row in %s: %s", self.path, ex)
        return rows

    def _store(self, events: list[ShippingEvent]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as fh:
            json.dump([e.to_dict() for e in events], fh, ensure_ascii=False, indent=2)
        tmp.replace(self.path)
