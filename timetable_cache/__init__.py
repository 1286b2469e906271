from .cache import TimetableCache
from .config import CacheSettings, load_settings
from .database import StorageGateway
from .exceptions import (
    CacheMiss,
    DecodeFailure,
    StorageUnavailable,
    TimetableCacheError,
    WriteFailure,
)
from .loader import load_timetable
from .schema import DataSchemeVersion
from .timetable_models import TimetableEntry

__all__ = [
    "CacheMiss",
    "CacheSettings",
    "DataSchemeVersion",
    "DecodeFailure",
    "StorageGateway",
    "StorageUnavailable",
    "TimetableCache",
    "TimetableCacheError",
    "TimetableEntry",
    "WriteFailure",
    "load_settings",
    "load_timetable",
]
