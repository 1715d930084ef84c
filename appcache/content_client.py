from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode

import httpx

from .cache import CacheManager
from .helpers import create_cache_key
from .schemas import CacheOptions
from .settings import settings

RESOURCES = ("packages", "activities", "testimonials", "media")


class UnknownResourceError(ValueError):
    pass


class ContentClient:
    """Thin async client for the upstream CMS content API, read through a cache.

    Parameters
    ----------
    cache : CacheManager
        Cache holding upstream responses.
    base_url : Optional[str]
        Base URL of the CMS API. Defaults to `settings.content_base_url`.
    transport : Optional[httpx.AsyncBaseTransport]
        Custom transport, mostly useful to plug `httpx.MockTransport` in tests.
    ttl : Optional[float]
        Milliseconds an upstream response stays cached. Defaults to `settings.content_ttl_ms`.
    timeout : Optional[float]
        Per-request timeout in seconds. Defaults to `settings.content_timeout_seconds`.

    Notes
    -----
    - Uses `httpx` with `timeout` seconds per request.
    - Each resource is cached under its own tag (`packages`, `activities`, ...)
      next to the generic `api` tag, so one resource can be revalidated alone.
    - Failed requests raise and are never cached.
    """

    def __init__(
        self,
        cache: CacheManager,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        ttl: Optional[float] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = (base_url or settings.content_base_url).rstrip("/")
        self._transport = transport
        self.ttl = settings.content_ttl_ms if ttl is None else ttl
        self.timeout = settings.content_timeout_seconds if timeout is None else timeout
        self._fetchers = {
            resource: cache.wrap_api_call(
                self._get_json,
                _request_key,
                CacheOptions(ttl=self.ttl, tags=["api", resource]),
            )
            for resource in RESOURCES
        }

    async def _get_json(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        """Perform a GET request and return the parsed JSON payload.

        Parameters
        ----------
        path : str
            Path relative to `base_url`, starting with `/`.
        params : Optional[Mapping[str, Any]]
            Query string parameters.

        Returns
        -------
        Any
            Parsed JSON as Python types.

        Raises
        ------
        httpx.HTTPStatusError
            If the response has a 4xx/5xx status code.
        httpx.RequestError
            For transport-level errors (DNS, timeouts, etc.).
        """

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            r = await client.get(f"{self.base_url}{path}", params=dict(params or {}))
            r.raise_for_status()
            return r.json()

    def _fetcher(self, resource: str):
        try:
            return self._fetchers[resource]
        except KeyError:
            raise UnknownResourceError(f"Unknown content resource: {resource}") from None

    async def list_resource(self, resource: str, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Fetch a page of items, e.g. `/packages?page=1&limit=10`.

        Parameters are forwarded verbatim; `None` values are dropped so that
        optional filters do not fragment the cache.
        """

        clean = {k: v for k, v in (params or {}).items() if v is not None}
        return await self._fetcher(resource)(f"/{resource}", clean)

    async def get_item(self, resource: str, item_id: str) -> Dict[str, Any]:
        return await self._fetcher(resource)(f"/{resource}/{item_id}")


def _request_key(path: str, params: Optional[Mapping[str, Any]] = None) -> str:
    query = urlencode(sorted((params or {}).items()))
    return create_cache_key("content", path, query) if query else create_cache_key("content", path)
