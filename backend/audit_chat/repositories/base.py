"""
Generic data access for one ORM model.

Writes are flushed, never committed: the session orchestrator owns the
transaction and places the commits (after the user message, after the reply).
A failed write rolls the session back before the error propagates.
"""

from typing import Any, Dict, Generic, Optional, Type, TypeVar, Union
from sqlalchemy.orm import Session
from pydantic import BaseModel
import logging

from ..models.base import BaseModel as Record

ModelT = TypeVar("ModelT", bound=Record)
CreateT = TypeVar("CreateT", bound=BaseModel)
UpdateT = TypeVar("UpdateT", bound=BaseModel)

logger = logging.getLogger(__name__)


class BaseRepository(Generic[ModelT, CreateT, UpdateT]):

    def __init__(self, model: Type[ModelT]):
        self.model = model

    @property
    def _name(self) -> str:
        return self.model.__name__

    def get(self, db: Session, record_id: int) -> Optional[ModelT]:
        try:
            return db.get(self.model, record_id)
        except Exception as e:
            logger.error(f"{self._name} lookup failed (id={record_id}): {e}")
            raise

    def create(self, db: Session, payload: Union[CreateT, Dict[str, Any]]) -> ModelT:
        """Insert and flush, so ids and constraint violations surface right away."""
        try:
            row = self.model(**self._columns_only(payload))
            db.add(row)
            db.flush()
            db.refresh(row)
            logger.info(f"Inserted {self._name} id={row.id}")
            return row
        except Exception as e:
            logger.error(f"{self._name} insert failed: {e}")
            db.rollback()
            raise

    def update(self, db: Session, row: ModelT, changes: Union[UpdateT, Dict[str, Any]]) -> ModelT:
        """Apply only the fields the caller actually set."""
        try:
            for key, value in self._columns_only(changes).items():
                setattr(row, key, value)
            db.flush()
            db.refresh(row)
            return row
        except Exception as e:
            logger.error(f"{self._name} update failed (id={row.id}): {e}")
            db.rollback()
            raise

    def _columns_only(self, payload: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
        # mapped attribute names, so ChatMessage.meta works although its column is "metadata"
        data = payload.model_dump(exclude_unset=True) if isinstance(payload, BaseModel) else dict(payload)
        mapped = {attr.key for attr in self.model.__mapper__.column_attrs}
        return {k: v for k, v in data.items() if k in mapped}
