"""
Pydantic configuration models for the API client and the reconciler.

Validates settings at initialization time instead of silently passing
bad values to the HTTP client or the orchestrators.
"""

from __future__ import annotations

import os
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

DEFAULT_API_URL = "https://api.linode.com/v4"


class UnmatchedConfigPolicy(str, Enum):
    """What an update does with desired configs that have no remote match."""

    IGNORE = "ignore"
    CREATE = "create"
    ERROR = "error"


class LinodeConfig(BaseModel):
    """Configuration for the Linode API client.

    Values are resolved in order:
    1. Explicit values passed in the config dict.
    2. Environment variables (LINODE_TOKEN, LINODE_URL).
    3. Built-in defaults (the token has none and is required).
    """

    model_config = ConfigDict(extra="forbid")

    token: str | None = Field(default=None, description="Personal access token")
    api_url: str = Field(default=DEFAULT_API_URL, description="API base URL")
    http_timeout: float = Field(default=30.0, gt=0, description="Per-request timeout in seconds")
    page_size: int = Field(default=100, ge=25, le=500, description="Page size for list endpoints")

    @model_validator(mode="before")
    @classmethod
    def resolve_from_env(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Fall back to environment variables for missing values."""
        values = dict(values or {})
        if not values.get("token"):
            values["token"] = os.environ.get("LINODE_TOKEN")
        if not values.get("api_url") and os.environ.get("LINODE_URL"):
            values["api_url"] = os.environ["LINODE_URL"]
        return values

    @model_validator(mode="after")
    def validate_token(self) -> LinodeConfig:
        """Ensure a token is available."""
        if not self.token:
            raise ValueError(
                "Linode token is required. Set it explicitly or via the "
                "LINODE_TOKEN environment variable."
            )
        self.api_url = self.api_url.rstrip("/")
        return self


class ReconcileSettings(BaseModel):
    """Timeouts and policies used by the orchestrators.

    Timeouts are in seconds and may be overridden through
    NODEFORM_CREATE_TIMEOUT, NODEFORM_UPDATE_TIMEOUT and
    NODEFORM_DELETE_TIMEOUT.
    """

    model_config = ConfigDict(extra="forbid")

    create_timeout: int = Field(default=600, ge=0)
    update_timeout: int = Field(default=600, ge=0)
    delete_timeout: int = Field(default=600, ge=0)
    poll_interval: float = Field(default=3.0, ge=0)
    unmatched_config_policy: UnmatchedConfigPolicy = UnmatchedConfigPolicy.IGNORE

    @model_validator(mode="before")
    @classmethod
    def resolve_from_env(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Fall back to environment variables for missing timeouts."""
        values = dict(values or {})
        env_map = {
            "create_timeout": "NODEFORM_CREATE_TIMEOUT",
            "update_timeout": "NODEFORM_UPDATE_TIMEOUT",
            "delete_timeout": "NODEFORM_DELETE_TIMEOUT",
        }
        for field, env_var in env_map.items():
            if values.get(field) is None and os.environ.get(env_var):
                values[field] = os.environ[env_var]
        return values


__all__ = [
    "DEFAULT_API_URL",
    "LinodeConfig",
    "ReconcileSettings",
    "UnmatchedConfigPolicy",
]
