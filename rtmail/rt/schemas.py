"""Pydantic schemas for the RT configuration file.

Example ``rt-mail.json``::

    {
      "rt-url": "https://rt.example.org/REST/1.0/NoAuth/mail-gateway",
      "queues": {
        "support": "support",
        "help@example.com": "example"
      }
    }

Queue targets are either a full address or a local part. They are matched
against lowercased recipient addresses in the order they appear in the file.
"""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


class ConfigError(Exception):
    """Configuration file is missing, unreadable or invalid."""


class RTConfig(BaseModel):
    """Configuration for the RT mail gateway client."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    rt_url: str = Field(..., alias="rt-url", min_length=1)
    queues: dict[str, str] = Field(default_factory=dict)

    @field_validator("rt_url")
    @classmethod
    def _http_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("rt-url must be an http(s) URL")
        return value

    @field_validator("queues")
    @classmethod
    def _no_empty_entries(cls, value: dict[str, str]) -> dict[str, str]:
        for target, queue in value.items():
            if not target:
                raise ValueError("queue target must not be empty")
            if not queue:
                raise ValueError(f"queue name for {target!r} must not be empty")
        return value


def load_rt_config(path: str | Path) -> RTConfig:
    """Load and validate an RT configuration file.

    Raises:
        ConfigError: If the file can't be read, isn't JSON or fails validation
    """
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"loading configuration file '{path}': {e}") from e

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigError(f"configuration file '{path}' is not valid JSON: {e}") from e

    try:
        return RTConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"configuration file '{path}' is invalid: {e}") from e
