"""
Pydantic schemas for caller-supplied options
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator


class SearchOptions(BaseModel):
    """
    Options accepted by PlatformAdapter.search
    """
    limit: int = Field(25, ge=1, le=500)
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    sort_by: Literal["relevance", "date"] = "relevance"
    include_replies: bool = False

    @model_validator(mode="after")
    def _check_window(self) -> "SearchOptions":
        if self.since and self.until and self.since > self.until:
            raise ValueError("since must not be after until")
        return self


class TrendAnalysisOptions(BaseModel):
    """
    Options accepted by TrendAnalysisService.analyze_trends.
    A missing start/end defaults to the trailing seven days.
    """
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    min_conversation_count: int = Field(5, ge=1)
    min_relevance_score: float = Field(0.3, ge=0.0, le=1.0)
    platforms: Optional[List[str]] = None
    keywords: Optional[List[str]] = None
    include_emerging_trends: bool = True
    max_results: int = Field(20, ge=1, le=200)

    @model_validator(mode="after")
    def _check_window(self) -> "TrendAnalysisOptions":
        if self.start and self.end and self.start >= self.end:
            raise ValueError("start must be before end")
        return self
