# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Request models validated at the service boundary.

Field names follow the HTTP wire format (camelCase aliases); Python code
uses the snake_case attributes. The core never re-validates these.
"""

from __future__ import annotations

from typing import TypeVar
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .config import DEFAULT_HEIGHT, DEFAULT_WIDTH
from .errors import InvalidRequestError

RequestT = TypeVar("RequestT", bound="ComplexityRequest")


def _check_url(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("url is required")
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("url must be an absolute http(s) URL")
    return value


class ComplexityRequest(BaseModel):
    """Body of ``POST /visual-complexity``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    url: str = Field(..., description="Page to render (http or https)")
    width: int = Field(DEFAULT_WIDTH, ge=0, description="Viewport width in px; 0 or missing uses the default")
    height: int = Field(DEFAULT_HEIGHT, ge=0, description="Viewport height in px; 0 or missing uses the default")

    @field_validator("url")
    @classmethod
    def _url(cls, value: str) -> str:
        return _check_url(value)

    @field_validator("width", mode="before")
    @classmethod
    def _default_width(cls, value: object) -> object:
        return DEFAULT_WIDTH if value is None or value == 0 else value

    @field_validator("height", mode="before")
    @classmethod
    def _default_height(cls, value: object) -> object:
        return DEFAULT_HEIGHT if value is None or value == 0 else value


class AnalysisRequest(ComplexityRequest):
    """Body of ``POST /``."""

    explain_roles: bool = Field(False, alias="explainRoles", description="Attach ranked role candidates")
    user_agent: str | None = Field(None, alias="userAgent", description="Browser user agent")
    wait: int = Field(0, description="Extra settle time after load, in ms; negative or missing means 0")

    @field_validator("wait", mode="before")
    @classmethod
    def _clamp_wait(cls, value: object) -> object:
        if value is None:
            return 0
        if isinstance(value, int | float) and not isinstance(value, bool):
            return max(int(value), 0)
        return value

    @field_validator("user_agent", mode="before")
    @classmethod
    def _blank_agent(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value


def validation_message(exc: ValidationError) -> str:
    """First validation error as a single human-readable line."""
    errors = exc.errors()
    if not errors:
        return "invalid request"
    first = errors[0]
    loc = ".".join(str(p) for p in first.get("loc", ()))
    msg = first.get("msg", "invalid value")
    msg = msg.removeprefix("Value error, ")
    return f"{loc}: {msg}" if loc else msg


def parse_request(model: type[RequestT], body: object) -> RequestT:
    """Validate a request body against *model*.

    Raises:
        InvalidRequestError: body is not a JSON object or fails validation.
    """
    if not isinstance(body, dict):
        raise InvalidRequestError("request body must be a JSON object")
    try:
        return model.model_validate(body)
    except ValidationError as exc:
        raise InvalidRequestError(validation_message(exc)) from exc
