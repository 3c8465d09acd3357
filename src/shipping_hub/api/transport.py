from __future__ import annotations

from typing import Any, Dict, Optional
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

# POST is never retried here: a replayed order-create commits a second shipment.
_IDEMPOTENT_METHODS = ("GET", "HEAD", "OPTIONS")


class RequestsTransport:
    """Requests session wrapper with retry/backoff.

    Retries idempotent calls on typical transient errors and on the listed
    status codes. `timeout` is the default per-request timeout in seconds.
    """

    def __init__(self, timeout: float = 30, max_retries: int = 2, backoff_factor: float = 0.3) -> None:
        self.session = requests.Session()
        self.timeout = timeout

        retry = Retry(
            total=max_retries,
            read=max_retries,
            connect=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=(429, 500, 502, 503, 504),
            allowed_methods=_IDEMPOTENT_METHODS,
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry)
        # mount both http and https
        self.session.mount("https://", adapter)
        self.session.mount("http://", adapter)

    def post(self, url: str, *, headers: Optional[Dict[str, str]] = None, data: Any = None, json: Any = None, params: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None):
        return self.session.post(url, headers=headers, data=data, json=json, params=params, timeout=timeout or self.timeout)

    def get(self, url: str, *, headers: Optional[Dict[str, str]] = None, params: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None):
        return self.session.get(url, headers=headers, params=params, timeout=timeout or self.timeout)

    def close(self) -> None:
        self.session.close()
