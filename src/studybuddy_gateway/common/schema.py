"""Pydantic models and dataclasses for request/response types."""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

NO_RESPONSE = "No response generated"

class AskIn(BaseModel):
    question: str = Field(min_length=1, strict=True)

class AskOut(BaseModel):
    response: str

class HealthOut(BaseModel):
    status: str
    model: str
    rotation: str

@dataclass(frozen=True)
class Credential:
    """One Gemini API key and its 1-based position in the pool."""
    slot: int
    key: str = field(repr=False)

@dataclass(frozen=True)
class VerifiedIdentity:
    """Decoded claims of a verified Firebase ID token."""
    uid: str
    claims: dict[str, Any] = field(default_factory=dict, repr=False)

class ResponseShape(str, Enum):
    """Which branch of the provider payload produced the text."""
    PARTS = "parts"
    TEXT = "text"
    EMPTY = "empty"

@dataclass(frozen=True)
class Completion:
    """Normalized generation result. ``text`` is never empty."""
    text: str
    shape: ResponseShape

    @classmethod
    def empty(cls) -> "Completion":
        return cls(text=NO_RESPONSE, shape=ResponseShape.EMPTY)
