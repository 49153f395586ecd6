# =============================================================================
# agri_core/config/__init__.py
# =============================================================================

from .settings import (
    SyncSettings,
    load_settings,
    DEFAULT_TRACKED_COLLECTIONS,
    COLLECTION_NAME_PATTERN,
)

__all__ = [
    "SyncSettings",
    "load_settings",
    "DEFAULT_TRACKED_COLLECTIONS",
    "COLLECTION_NAME_PATTERN",
]
