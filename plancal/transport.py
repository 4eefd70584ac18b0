"""HTTP transport used by the planner, the move submission and the verifier.

``Transport`` is the contract the rest of the package depends on:

  - ``fetch_json``: GET with an optional ``If-None-Match`` token, returning
    the decoded payload and the response's conditional token.
  - ``post_json``: POST a JSON body and report success + HTTP status.

``RequestsTransport`` implements it with ``requests``.  ``CachedClient``
routes GETs through the revalidation cache.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from typing import Any, NamedTuple
from urllib.parse import urlencode

import requests

from .errors import TransportError
from .http_cache import DEFAULT_TTL, RevalidationCache, cache_key

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30


class FetchResult(NamedTuple):
    payload: Any
    etag: str | None
    status: int = 200

    @property
    def not_modified(self) -> bool:
        return self.status == 304


class PostResult(NamedTuple):
    ok: bool
    status: int | None
    message: str = ""


def build_url(url: str, params: Mapping[str, str] | None = None) -> str:
    if not params:
        return url
    return f"{url}?{urlencode(sorted(params.items()))}"


class Transport(ABC):
    @abstractmethod
    def fetch_json(
        self,
        url: str,
        params: Mapping[str, str] | None = None,
        etag: str | None = None,
    ) -> FetchResult:
        """GET *url*; raises ``TransportError`` on network failure or non-2xx/304."""

    @abstractmethod
    def post_json(self, url: str, body: Any) -> PostResult:
        """POST *body* as JSON; never raises for HTTP or network failures."""


class RequestsTransport(Transport):
    """``requests``-backed transport with bearer-token authentication."""

    def __init__(
        self,
        token_provider: Callable[[], str | None] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
        accept_language: str | None = None,
    ) -> None:
        self.token_provider = token_provider
        self.timeout = timeout
        self.session = session or requests.Session()
        self.accept_language = accept_language

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        token = self.token_provider() if self.token_provider else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if self.accept_language:
            headers["Accept-Language"] = self.accept_language
        return headers

    def fetch_json(self, url, params=None, etag=None) -> FetchResult:
        headers = self._headers()
        if etag:
            headers["If-None-Match"] = etag
        try:
            resp = self.session.get(url, params=params, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError(f"GET {url} failed: {e}", url=url) from e

        new_etag = resp.headers.get("ETag")
        if resp.status_code == 304:
            return FetchResult(payload=None, etag=new_etag or etag, status=304)
        if not resp.ok:
            raise TransportError(f"GET {url} returned {resp.status_code}", url=url, status=resp.status_code)
        try:
            payload = resp.json()
        except ValueError as e:
            raise TransportError(f"GET {url} returned invalid JSON: {e}", url=url, status=resp.status_code) from e
        return FetchResult(payload=payload, etag=new_etag, status=resp.status_code)

    def post_json(self, url, body) -> PostResult:
        headers = self._headers()
        headers["Content-Type"] = "application/json"
        try:
            resp = self.session.post(url, data=json.dumps(body), headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            log.warning("POST %s failed: %s", url, e)
            return PostResult(ok=False, status=None, message=str(e))
        if not resp.ok:
            return PostResult(ok=False, status=resp.status_code, message=resp.text[:500])
        return PostResult(ok=True, status=resp.status_code)

    def close(self) -> None:
        self.session.close()


class CachedClient:
    """GET-only JSON client backed by a ``RevalidationCache``.

    ``ttl=0`` skips the cache in both directions.  A cached body that no
    longer decodes is invalidated and refetched.
    """

    def __init__(
        self,
        transport: Transport,
        cache: RevalidationCache,
        default_ttl: float = DEFAULT_TTL,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        self.transport = transport
        self.cache = cache
        self.default_ttl = default_ttl
        # request headers the transport sends that may change the response
        self.headers = dict(headers or {})

    def key_for(self, url: str, params: Mapping[str, str] | None = None) -> str:
        return cache_key("GET", build_url(url, params), self.headers)

    def get_json(self, url: str, params: Mapping[str, str] | None = None, ttl: float | None = None) -> Any:
        ttl = self.default_ttl if ttl is None else ttl
        key = self.key_for(url, params)

        if ttl > 0:
            raw = self.cache.get(key)
            if raw is not None:
                try:
                    return json.loads(raw)
                except ValueError:
                    log.info("Cached body for %s no longer decodes; refetching", url)
                    self.cache.invalidate(key)

        result = self.transport.fetch_json(url, params=params)
        if ttl > 0 and result.payload is not None:
            self.cache.put(key, json.dumps(result.payload).encode("utf-8"), ttl)
        return result.payload

    def invalidate(self, url: str, params: Mapping[str, str] | None = None) -> None:
        self.cache.invalidate(self.key_for(url, params))
