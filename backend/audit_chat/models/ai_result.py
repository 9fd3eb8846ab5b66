"""
AIResult model: the generated report artifacts for a purchase.
Written by the report pipeline; the chat subsystem only reads it.
"""
from sqlalchemy import Column, String, JSON
from .base import BaseModel

class AIResult(BaseModel):
    __tablename__ = "ai_results"

    purchase_id = Column(String(64), nullable=False, unique=True, index=True)

    # Marketing audit report (free-form JSON keyed by section title)
    result_data = Column(JSON, nullable=True)

    # Website analysis: {"score": {...}, "analysis": {...}, "recommendations": [...], ...}
    website_analysis = Column(JSON, nullable=True)

    status = Column(String(20), nullable=False, default="completed")

    def payload_for(self, report_type: str):
        """Return the report artifact the given report type discusses."""
        if report_type == "website":
            return self.website_analysis
        return self.result_data

    def __repr__(self):
        return f"<AIResult(id={self.id}, purchase_id='{self.purchase_id}', status='{self.status}')>"
