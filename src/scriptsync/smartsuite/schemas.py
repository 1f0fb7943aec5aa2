"""Validated payloads sent to SmartSuite."""
from typing import Literal

from pydantic import BaseModel, Field


class ComponentPayload(BaseModel):
    """One script component (paragraph) pushed to a SmartSuite video."""

    id: str = Field(min_length=1)
    content: str = Field(min_length=1)
    order: int = Field(ge=1)
    type: Literal["paragraph", "heading", "list", "quote"] = "paragraph"
