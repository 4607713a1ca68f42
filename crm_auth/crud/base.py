# crm_auth/crud/base.py
import logging
from contextlib import contextmanager
from typing import Any, Dict, Generic, Iterator, Optional, Type, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from crm_auth.core.config import settings
from crm_auth.core.errors import DatabaseUnavailable
from crm_auth.db.base_class import Base

logger = logging.getLogger(__name__)

ModelType = TypeVar("ModelType", bound=Base)


@contextmanager
def db_errors(db: Session, op: str) -> Iterator[None]:
    """Rolls back and re-raises driver failures as DatabaseUnavailable.

    IntegrityError passes through untouched; callers map it to a domain error.
    """
    try:
        yield
    except IntegrityError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("database failure during %s", op)
        raise DatabaseUnavailable(details=None if settings.is_production else str(exc)) from exc


class CRUDBase(Generic[ModelType]):
    def __init__(self, model: Type[ModelType]):
        self.model = model

    def get(self, db: Session, id: Any) -> Optional[ModelType]:
        with db_errors(db, f"get {self.model.__tablename__}"):
            return db.get(self.model, id)

    def create(self, db: Session, data: Dict[str, Any]) -> ModelType:
        with db_errors(db, f"create {self.model.__tablename__}"):
            obj = self.model(**data)
            db.add(obj); db.commit(); db.refresh(obj)
            return obj

    def update(self, db: Session, db_obj: ModelType, data: Dict[str, Any]) -> ModelType:
        with db_errors(db, f"update {self.model.__tablename__}"):
            for f, v in data.items():
                setattr(db_obj, f, v)
            db.add(db_obj); db.commit(); db.refresh(db_obj)
            return db_obj
