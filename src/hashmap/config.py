"""Hashmap overlay configuration.

Environment variables:
    HASHMAP_NAME: Name of this overlay (default: "hashmap")
    HASHMAP_REMOTE: Backing store to wrap (required)
    HASHMAP_HASH_TYPE: none, md5, sha1 or sha256 (default: md5)
    HASHMAP_ROOT: Logical directory the overlay is rooted at (default: "")
"""

from __future__ import annotations

import os
from typing import Final

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from hashmap.hashing import HashType
from hashmap.paths import normalize

ENV_HASHMAP_NAME: Final[str] = "HASHMAP_NAME"
ENV_HASHMAP_REMOTE: Final[str] = "HASHMAP_REMOTE"
ENV_HASHMAP_HASH_TYPE: Final[str] = "HASHMAP_HASH_TYPE"
ENV_HASHMAP_ROOT: Final[str] = "HASHMAP_ROOT"

DEFAULT_NAME: Final[str] = "hashmap"
DEFAULT_HASH_TYPE: Final[HashType] = HashType.MD5


class ConfigError(Exception):
    """Raised when the overlay configuration is invalid (fail-closed)."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        self.message = message
        self.errors = errors or []
        super().__init__(message)


class HashmapConfig(BaseModel):
    """Validated overlay configuration."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(default=DEFAULT_NAME, min_length=1, pattern=r"^[^:/\s]+$")
    remote: str = Field(..., min_length=1, description="Backing store to wrap")
    hash_type: HashType = Field(default=DEFAULT_HASH_TYPE)
    root: str = Field(default="", description="Logical root inside the overlay")

    @field_validator("remote")
    @classmethod
    def no_blank_remote(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("remote cannot be empty or whitespace-only")
        return v

    @field_validator("root")
    @classmethod
    def normalize_root(cls, v: str) -> str:
        if "\n" in v:
            raise ValueError("root may not contain newline")
        return normalize(v)

    @model_validator(mode="after")
    def remote_is_not_self(self) -> HashmapConfig:
        if self.remote.startswith(f"{self.name}:"):
            raise ValueError("can't point hashmap remote at itself - check the value of remote")
        return self

    @classmethod
    def create(cls, **values: object) -> HashmapConfig:
        """Validate values, raising ConfigError instead of ValidationError."""
        try:
            return cls.model_validate(values)
        except ValidationError as e:
            errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
            raise ConfigError(
                f"Hashmap configuration invalid with {len(errors)} error(s)", errors=errors
            ) from e


def _get_env(key: str) -> str | None:
    raw = os.environ.get(key)
    if raw is None or not raw.strip():
        return None
    return raw.strip()


def load_hashmap_config() -> HashmapConfig:
    """Load overlay configuration from environment variables.

    Returns:
        HashmapConfig with validated values.

    Raises:
        ConfigError: If HASHMAP_REMOTE is missing or any value is invalid.
    """
    remote = _get_env(ENV_HASHMAP_REMOTE)
    if remote is None:
        raise ConfigError(f"{ENV_HASHMAP_REMOTE} must be set")

    values: dict[str, object] = {"remote": remote}
    for field_name, env_var in (
        ("name", ENV_HASHMAP_NAME),
        ("hash_type", ENV_HASHMAP_HASH_TYPE),
        ("root", ENV_HASHMAP_ROOT),
    ):
        raw = _get_env(env_var)
        if raw is not None:
            values[field_name] = raw.lower() if field_name == "hash_type" else raw
    return HashmapConfig.create(**values)
