"""
IR fragments produced by the engine.

Only the node kinds the engine emits are modelled here. They serialize to
the same JSON shape the editor's renderer consumes (``type`` discriminator,
stable ``id``).
"""

from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field


class ListNode(BaseModel):
    id: str
    type: Literal["list"] = "list"
    ordered: bool = False
    items: List[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True, extra="forbid")


class SectionNode(BaseModel):
    id: str
    type: Literal["section"] = "section"
    level: int = Field(1, ge=1, le=6)
    title: str
    children: List[ListNode] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True, extra="forbid")
