from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class CacheEntry(BaseModel):
    """A cached value with its expiry metadata.

    Notes
    -----
    - `timestamp` is the insertion time in milliseconds since the epoch.
    - `ttl` is in milliseconds; the entry is expired once `now - timestamp > ttl`.
    - `data` is stored by reference unless the caller asked for serialization.
    """

    key: str
    data: Any = None
    timestamp: float
    ttl: float
    tags: List[str] = Field(default_factory=list)


class CacheOptions(BaseModel):
    ttl: Optional[float] = None
    tags: Optional[List[str]] = None
    serialize: bool = False


class PreloadEntry(BaseModel):
    key: str
    data: Any = None
    options: Optional[CacheOptions] = None


class CacheStats(BaseModel):
    """Running counters for a cache manager.

    Notes
    -----
    - `hit_rate` is `hits / (hits + misses)`, or 0.0 before any lookup.
    - `clear()` resets `size` only; the other counters keep their history.
    """

    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    size: int = 0
    hit_rate: float = 0.0


class KeysResponse(BaseModel):
    count: int
    data: List[str]


class RevalidateRequest(BaseModel):
    type: Literal["path", "tag", "all"] = "path"
    paths: Optional[List[str]] = None
    tags: Optional[List[str]] = None


class RevalidatedTargets(BaseModel):
    paths: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)


class RevalidateResponse(BaseModel):
    success: bool
    message: str
    removed: int
    revalidated: RevalidatedTargets


class RevalidateInfo(BaseModel):
    message: str
    availableTypes: List[str]
    commonPaths: List[str]
    commonTags: List[str]
    usage: Dict[str, str]
