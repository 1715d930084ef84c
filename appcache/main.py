import logging
import re
from contextlib import asynccontextmanager
from enum import Enum
from typing import Optional

import httpx
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from .cache import CacheManager
from .content_client import ContentClient
from .lifecycle import CachePersistence
from .logging_config import configure_logging
from .schemas import (
    CacheStats,
    KeysResponse,
    RevalidatedTargets,
    RevalidateInfo,
    RevalidateRequest,
    RevalidateResponse,
)
from .settings import Settings, settings as default_settings
from .storage import PersistentStorage, SessionStorage, StorageArea, StorageCache

logger = logging.getLogger(__name__)

COMMON_PATHS = ["/packages", "/activities", "/testimonials", "/media"]
COMMON_TAGS = ["packages", "activities", "testimonials", "media"]


class ContentResource(str, Enum):
    packages = "packages"
    activities = "activities"
    testimonials = "testimonials"
    media = "media"


def create_app(
    config: Optional[Settings] = None,
    storage: Optional[StorageArea] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the cache service.

    Parameters
    ----------
    config : Optional[Settings]
        Settings to use. Defaults to the module-level `settings`.
    storage : Optional[StorageArea]
        Where the cache is persisted between restarts. Defaults to a
        `PersistentStorage` in `config.storage_dir`, or to an in-process
        `SessionStorage` when no directory is configured.
    transport : Optional[httpx.AsyncBaseTransport]
        Transport for the upstream content API (tests pass a mock).

    Returns
    -------
    FastAPI
        Application whose lifespan restores the cache on startup and saves
        it on shutdown. The manager is exposed as `app.state.cache`.
    """

    config = config or default_settings
    configure_logging(config)

    if storage is None:
        storage = PersistentStorage(config.storage_dir) if config.storage_dir else SessionStorage()

    cache = CacheManager(
        max_size=config.cache_max_size,
        default_ttl=config.cache_ttl_medium_ms,
        cleanup_interval=config.cleanup_interval_seconds,
        autostart=False,
    )
    persistence = CachePersistence(
        cache,
        StorageCache(storage, config.storage_key),
        save_interval=config.cleanup_interval_seconds,
    )
    client = ContentClient(
        cache,
        base_url=config.content_base_url,
        transport=transport,
        ttl=config.content_ttl_ms,
        timeout=config.content_timeout_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        persistence.startup()
        try:
            yield
        finally:
            persistence.shutdown()

    app = FastAPI(title="App Cache Service", version="1.0.0", lifespan=lifespan)
    app.state.cache = cache
    app.state.persistence = persistence
    app.state.content_client = client

    @app.get("/health")
    async def health():
        """Liveness check for the service.

        Returns
        -------
        dict
            A fixed payload `{"status": "ok"}` used by orchestrators and uptime checks.
        """

        return {"status": "ok"}

    @app.get("/v1/cache/stats", response_model=CacheStats)
    async def cache_stats():
        return cache.get_stats()

    @app.get("/v1/cache/keys", response_model=KeysResponse)
    async def cache_keys():
        keys = cache.get_keys()
        return {"count": len(keys), "data": keys}

    @app.delete("/v1/cache/keys/{key:path}", status_code=204)
    async def delete_cache_key(key: str):
        """Drop a single entry.

        Raises
        ------
        HTTPException
            404 if no entry is stored under `key`.
        """

        if not cache.delete(key):
            raise HTTPException(status_code=404, detail="Cache key not found")
        return Response(status_code=204)

    @app.get("/v1/cache/revalidate", response_model=RevalidateInfo)
    async def revalidate_info():
        return {
            "message": "Revalidation API endpoint",
            "availableTypes": ["path", "tag", "all"],
            "commonPaths": COMMON_PATHS,
            "commonTags": COMMON_TAGS,
            "usage": {
                "path": 'POST with { "type": "path", "paths": ["/path1", "/path2"] }',
                "tag": 'POST with { "type": "tag", "tags": ["tag1", "tag2"] }',
                "all": 'POST with { "type": "all" }',
            },
        }

    @app.post("/v1/cache/revalidate", response_model=RevalidateResponse)
    async def revalidate(body: RevalidateRequest):
        """Invalidate cached content by path, by tag, or entirely.

        Parameters
        ----------
        body : RevalidateRequest
            `type` selects the mode. `path` drops every key containing one of
            `paths`, `tag` drops entries carrying one of `tags`, `all` empties
            the cache.

        Returns
        -------
        RevalidateResponse
            What was revalidated and how many entries were removed.

        Raises
        ------
        HTTPException
            400 if `paths` (for `path`) or `tags` (for `tag`) is missing.
        """

        targets = RevalidatedTargets()
        if body.type == "all":
            removed = cache.get_size()
            cache.clear()
            targets.paths = list(COMMON_PATHS)
            targets.tags = list(COMMON_TAGS)
        elif body.type == "path":
            if not body.paths:
                raise HTTPException(status_code=400, detail="Provide paths for path revalidation")
            removed = sum(cache.invalidate_pattern(re.escape(path)) for path in body.paths)
            targets.paths = body.paths
        else:
            if not body.tags:
                raise HTTPException(status_code=400, detail="Provide tags for tag revalidation")
            removed = cache.clear_by_tags(body.tags)
            targets.tags = body.tags

        return {
            "success": True,
            "message": "Cache revalidated successfully",
            "removed": removed,
            "revalidated": targets,
        }

    @app.get("/v1/{resource}")
    async def list_content(resource: ContentResource, request: Request):
        """List content items from the CMS, served from cache when fresh.

        Query parameters (`page`, `limit`, `category`, `language`, ...) are
        forwarded to the upstream API and are part of the cache key.
        """

        params = dict(request.query_params)
        data = await _upstream(client.list_resource(resource.value, params))
        return JSONResponse(content=data)

    @app.get("/v1/{resource}/{item_id}")
    async def get_content(resource: ContentResource, item_id: str):
        data = await _upstream(client.get_item(resource.value, item_id))
        return JSONResponse(content=data)

    return app


async def _upstream(call):
    try:
        return await call
    except httpx.HTTPStatusError as e:
        if e.response.status_code == 404:
            raise HTTPException(status_code=404, detail="Content not found")
        raise HTTPException(status_code=502, detail=f"Upstream returned {e.response.status_code}")
    except httpx.RequestError as e:
        logger.warning("Upstream content API unreachable: %s", e)
        raise HTTPException(status_code=502, detail="Upstream content API unreachable")


app = create_app(Settings.from_env())
