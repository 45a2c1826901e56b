"""Configuration for docimport."""

from .base import (
    DEFAULT_TAG,
    RELEASE_ID_PREFIX,
    SYSTEM_ID_PREFIX,
    get_bool_env,
    get_env,
    get_int_env,
)
from .main import (
    DEFAULT_ASSET_CONCURRENCY,
    DEFAULT_BATCH_MAX_BYTES,
    MAX_ASSET_CONCURRENCY,
    OPERATIONS,
    RELEASES_OPERATIONS,
    ImportOptions,
    validate_options,
)

__all__ = [
    "DEFAULT_ASSET_CONCURRENCY",
    "DEFAULT_BATCH_MAX_BYTES",
    "DEFAULT_TAG",
    "ImportOptions",
    "MAX_ASSET_CONCURRENCY",
    "OPERATIONS",
    "RELEASES_OPERATIONS",
    "RELEASE_ID_PREFIX",
    "SYSTEM_ID_PREFIX",
    "get_bool_env",
    "get_env",
    "get_int_env",
    "validate_options",
]
