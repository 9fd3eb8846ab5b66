"""
Read-only access to generated report artifacts.
"""

from typing import Any, Optional
from sqlalchemy.orm import Session
import logging

from ..models.ai_result import AIResult

logger = logging.getLogger(__name__)


class AIResultRepository:
    def get_by_purchase(self, db: Session, purchase_id: str) -> Optional[AIResult]:
        try:
            return db.query(AIResult).filter(AIResult.purchase_id == purchase_id).first()
        except Exception as e:
            logger.error(f"Error getting report for purchase {purchase_id}: {e}")
            raise

    def get_report_payload(self, db: Session, purchase_id: str, report_type: str) -> Optional[Any]:
        """The report JSON a session of this type discusses, or None if there is none."""
        row = self.get_by_purchase(db, purchase_id)
        if row is None:
            return None
        return row.payload_for(report_type)
