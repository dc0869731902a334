"""
News bridge contracts.

Typed shapes for upstream frames, the canonical event forwarded to the webhook,
and the ops API request/response bodies. Components exchange these models
instead of ad-hoc dicts.
"""

from __future__ import annotations

from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict


class NewsFrame(BaseModel):
    """
    Upstream `news` frame. `symbol` and `headline` are required; everything
    else is optional and defaulted by the transformer.
    """

    model_config = ConfigDict(extra="ignore")

    kind: Literal["news"] = "news"
    symbol: str
    headline: str
    summary: Optional[str] = None
    source: Optional[str] = None
    url: Optional[str] = None
    image: Optional[str] = None
    datetime: Optional[Union[int, float, str]] = None
    category: Optional[str] = None
    id: Optional[Union[str, int]] = None
    related: Optional[Union[str, list[str]]] = None


class PingFrame(BaseModel):
    kind: Literal["ping"] = "ping"


class OtherFrame(BaseModel):
    """Well-formed frame with a `type` we do not forward (acks, errors, ...)."""

    kind: Literal["other"] = "other"
    type: str
    payload: dict[str, Any] = Field(default_factory=dict)


class MalformedFrame(BaseModel):
    kind: Literal["malformed"] = "malformed"
    raw: str
    error: str


RawEvent = Union[NewsFrame, PingFrame, OtherFrame, MalformedFrame]


class CanonicalEvent(BaseModel):
    """
    Normalized news event as delivered to the webhook.
    """

    model_config = ConfigDict(extra="forbid")

    kind: Literal["news"] = "news"
    topic: str
    headline: str
    summary: str = ""
    source: str
    url: Optional[str] = None
    image: Optional[str] = None
    timestamp: str
    category: str = "general"
    id: str
    related: list[str]


class DeliveryResult(BaseModel):
    delivered: bool
    reason: Optional[str] = None
    status_code: Optional[int] = None

    @classmethod
    def ok(cls, status_code: int) -> "DeliveryResult":
        return cls(delivered=True, status_code=status_code)

    @classmethod
    def failed(cls, reason: str, *, status_code: int | None = None) -> "DeliveryResult":
        return cls(delivered=False, reason=reason, status_code=status_code)


class SymbolRequest(BaseModel):
    """
    Request body for POST /symbols.
    """

    model_config = ConfigDict(extra="forbid")

    symbol: str
