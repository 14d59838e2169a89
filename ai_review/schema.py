"""Structured output schema for AI text review results."""

from typing import List

from pydantic import BaseModel, ConfigDict, Field


class ReviewIssue(BaseModel):
    """One issue reported for a PDM description."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    text: str = Field(min_length=1)
    flags: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)


class ReviewResult(BaseModel):
    """All issues for one requested PDM number, in response order."""

    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    pdm_num: str = Field(alias="pdmNum")
    ai_errors: List[ReviewIssue] = Field(default_factory=list, alias="aiErrors")
