"""Artifact mirror: cache lookup, ordered upstream fallback and directory listings."""

from .errors import ArtifactNotFound, CacheWriteFailure, InvalidPath, MirrorError
from .pipeline import FetchPipeline, Resolution
from .store import CacheEntry, CacheStore, EntryKind
from .upstream import FetchResult, UpstreamResolver

__all__ = [
    "ArtifactNotFound",
    "CacheEntry",
    "CacheStore",
    "CacheWriteFailure",
    "EntryKind",
    "FetchPipeline",
    "FetchResult",
    "InvalidPath",
    "MirrorError",
    "Resolution",
    "UpstreamResolver",
]
