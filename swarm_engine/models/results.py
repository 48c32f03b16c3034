"""
Structured task result schemas

Results pulled out of a transcript are validated with pydantic before they are
rendered or persisted, so every artifact carries a known type.
"""

from typing import List

from pydantic import BaseModel, Field

from .enums import ArtifactType


class Artifact(BaseModel):
    """A file-like output referenced by an agent's result."""
    url: str
    type: ArtifactType
    filename: str


class TaskResult(BaseModel):
    """Clean summary plus the deduplicated artifacts found in a run."""
    summary: str
    artifacts: List[Artifact] = Field(default_factory=list)
