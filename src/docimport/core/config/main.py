"""Typed import options (Pydantic).

``ImportOptions`` is the single source of truth for how an import runs. Defaults
are applied here, once, and every value is validated before any I/O happens.
Pipeline code accepts ``ImportOptions`` instead of loose dicts.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import Any, Callable

import httpx
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from ..exceptions import ConfigurationError
from ..interfaces import STORE_METHODS
from ..types import ProgressEvent
from .base import CLI_TAG_PREFIX, DEFAULT_TAG, ENV_PREFIX, get_bool_env, get_env, get_int_env

logger = logging.getLogger(__name__)

OPERATIONS = ("create", "createIfNotExists", "createOrReplace")
RELEASES_OPERATIONS = ("fail", "ignore", "replace")

MAX_ASSET_CONCURRENCY = 12
DEFAULT_ASSET_CONCURRENCY = 8
DEFAULT_ASSET_VERIFICATION_CONCURRENCY = 12

# Keep transactions well below the store's maximum request payload.
DEFAULT_BATCH_MAX_BYTES = 1024 * 256

_TAG_RE = re.compile(r"^[a-z0-9._-]{1,75}$", re.IGNORECASE)


def _noop_progress(event: ProgressEvent) -> None:
    return None


class ImportOptions(BaseModel):
    """Options for one import run."""

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    client: Any
    operation: str = "create"
    releases_operation: str = "fail"
    tag: str = DEFAULT_TAG

    skip_cross_dataset_references: bool = False
    allow_system_documents: bool = False
    allow_assets_in_different_dataset: bool = False
    allow_failing_assets: bool = False
    allow_replacement_characters: bool = False
    replace_assets: bool = False

    asset_concurrency: int = DEFAULT_ASSET_CONCURRENCY
    asset_verification_concurrency: int = Field(
        default=DEFAULT_ASSET_VERIFICATION_CONCURRENCY, ge=1
    )
    batch_max_bytes: int = Field(default=DEFAULT_BATCH_MAX_BYTES, ge=1)

    # Set by the folder importer
    assets_base: str | None = None
    asset_map: dict[str, dict[str, Any]] = Field(default_factory=dict)
    unreferenced_assets: list[str] = Field(default_factory=list)

    # Taken from the client config unless given explicitly
    target_project_id: str | None = None
    target_dataset: str | None = None

    on_progress: Callable[[ProgressEvent], None] = _noop_progress
    http_client: httpx.AsyncClient | None = None

    @field_validator("operation")
    @classmethod
    def _validate_operation(cls, v: str) -> str:
        if v not in OPERATIONS:
            raise ValueError(f'Operation "{v}" is not supported')
        return v

    @field_validator("releases_operation")
    @classmethod
    def _validate_releases_operation(cls, v: str) -> str:
        if v not in RELEASES_OPERATIONS:
            raise ValueError(f'Releases operation "{v}" is not supported')
        return v

    @field_validator("tag")
    @classmethod
    def _validate_tag(cls, v: str) -> str:
        if not isinstance(v, str) or not _TAG_RE.match(v):
            raise ValueError(
                "Tag can only contain alphanumeric characters, underscores, dashes and dots, "
                "and be between one and 75 characters long."
            )
        return v

    @field_validator("asset_concurrency")
    @classmethod
    def _validate_asset_concurrency(cls, v: int) -> int:
        if v > MAX_ASSET_CONCURRENCY:
            raise ValueError(f"`asset_concurrency` must be <= {MAX_ASSET_CONCURRENCY}")
        if v < 1:
            raise ValueError("`asset_concurrency` must be >= 1")
        return v

    @model_validator(mode="after")
    def _validate_client(self) -> ImportOptions:
        client = self.client
        if client is None:
            raise ValueError("`client` must be set to a document store client")

        missing = next((m for m in STORE_METHODS if not callable(getattr(client, m, None))), None)
        if missing:
            raise ValueError(
                f'`client` is not a valid document store client - no "{missing}" method found'
            )

        client_config = dict(client.config() or {})
        if not client_config.get("token"):
            raise ValueError("Client is not instantiated with a `token`")

        # Avoid `sanity.cli.sanity.import` style tags when invoked from the CLI
        if client_config.get("request_tag_prefix") == CLI_TAG_PREFIX and self.tag == DEFAULT_TAG:
            new_config = {k: v for k, v in client_config.items() if k != "request_tag_prefix"}
            self.client = client.with_config(new_config)

        if self.target_project_id is None and client_config.get("project_id"):
            self.target_project_id = client_config["project_id"]
        if self.target_dataset is None and client_config.get("dataset"):
            self.target_dataset = client_config["dataset"]
        return self

    @classmethod
    def from_env(cls, client: Any, **overrides: Any) -> ImportOptions:
        """Build options from ``DOCIMPORT_*`` environment variables.

        A ``.env`` file in the working directory is honoured. Explicit
        ``overrides`` win over the environment.
        """
        load_dotenv()

        values: dict[str, Any] = {}
        for name in ("operation", "releases_operation", "tag", "assets_base"):
            if (v := get_env(f"{ENV_PREFIX}{name.upper()}")) is not None:
                values[name] = v
        for name in (
            "skip_cross_dataset_references",
            "allow_system_documents",
            "allow_assets_in_different_dataset",
            "allow_failing_assets",
            "allow_replacement_characters",
            "replace_assets",
        ):
            if (flag := get_bool_env(f"{ENV_PREFIX}{name.upper()}")) is not None:
                values[name] = flag
        for name in ("asset_concurrency", "asset_verification_concurrency", "batch_max_bytes"):
            if (num := get_int_env(f"{ENV_PREFIX}{name.upper()}")) is not None:
                values[name] = num

        values.update(overrides)
        values["client"] = client
        return validate_options(values)


def validate_options(options: ImportOptions | Mapping[str, Any]) -> ImportOptions:
    """Coerce ``options`` into validated ``ImportOptions``.

    Raises:
        ConfigurationError: If any option is invalid.
    """
    if isinstance(options, ImportOptions):
        return options
    if not isinstance(options, Mapping):
        raise ConfigurationError("Options must be an `ImportOptions` instance or a mapping")

    try:
        return ImportOptions.model_validate(dict(options))
    except ValidationError as e:
        raise ConfigurationError(_first_error_message(e)) from e


def _first_error_message(error: ValidationError) -> str:
    first = error.errors()[0]
    msg = str(first.get("msg", "Invalid options"))
    msg = msg.removeprefix("Value error, ")
    loc = ".".join(str(p) for p in first.get("loc", ()))
    if first.get("type") == "value_error" or not loc:
        return msg
    return f"Invalid option `{loc}`: {msg}"


__all__ = [
    "DEFAULT_ASSET_CONCURRENCY",
    "DEFAULT_BATCH_MAX_BYTES",
    "ImportOptions",
    "MAX_ASSET_CONCURRENCY",
    "OPERATIONS",
    "RELEASES_OPERATIONS",
    "validate_options",
]
