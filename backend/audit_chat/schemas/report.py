"""
Report shapes consumed by the context formatter.

Report artifacts arrive as free-form JSON written by the report pipeline.
They are matched into one of these optional-field structs; a section that is
None was absent from the source report and is omitted from the briefing.
"""

from typing import Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field


class MarketingReport(BaseModel):
    kind: Literal["marketing"] = "marketing"
    executive_summary: Optional[Any] = None
    health_score: Optional[Any] = None
    detailed_analysis: Optional[Any] = None
    red_flags: Optional[Any] = None
    opportunities: Optional[Any] = None
    action_plan: Optional[Any] = None
    social_performance: Optional[Any] = None
    tool_recommendations: Optional[Any] = None
    benchmarks: Optional[Any] = None
    next_steps: Optional[Any] = None
    follow_up: Optional[List[str]] = None
    # Sections we could not classify, keyed by their original title
    extra: Dict[str, Any] = Field(default_factory=dict)


class WebsiteScore(BaseModel):
    value: Optional[Any] = None
    status: Optional[str] = None


class WebsiteReport(BaseModel):
    kind: Literal["website"] = "website"
    score: Optional[WebsiteScore] = None
    analysis: Optional[Any] = None
    recommendations: Optional[Any] = None
    priority_roadmap: Optional[Any] = None
    follow_up: Optional[List[str]] = None
    extra: Dict[str, Any] = Field(default_factory=dict)


StructuredReport = Union[MarketingReport, WebsiteReport]
