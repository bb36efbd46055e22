import logging
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from errors import DuplicateToken, StoreUnavailable
from models import AccessToken

logger = logging.getLogger(__name__)


class TokenStore:
    """Persistence for AccessToken rows over an injected SQLAlchemy session.

    Exposes the three primitives the workflows rely on: ``find_one``,
    ``insert`` and the atomic ``update_if``. Connectivity problems surface as
    StoreUnavailable; a lost race on the unique token column as DuplicateToken.
    """

    def __init__(self, db: Session):
        self.db = db

    def _where(self, criteria: dict[str, Any]):
        return [getattr(AccessToken, field) == value for field, value in criteria.items()]

    def _rollback(self) -> None:
        try:
            self.db.rollback()
        except SQLAlchemyError:
            logger.exception("Rollback failed")

    def find_one(self, **criteria) -> AccessToken | None:
        try:
            return self.db.execute(select(AccessToken).where(*self._where(criteria))).scalars().first()
        except SQLAlchemyError as e:
            self._rollback()
            logger.exception("Token lookup failed")
            raise StoreUnavailable() from e

    def token_exists(self, token: str) -> bool:
        return self.find_one(token=token) is not None

    def list_for_form(self, form_id: int) -> list[AccessToken]:
        try:
            return list(self.db.execute(
                select(AccessToken).where(AccessToken.form_id == form_id).order_by(AccessToken.id)
            ).scalars().all())
        except SQLAlchemyError as e:
            self._rollback()
            logger.exception("Token listing failed for form %s", form_id)
            raise StoreUnavailable() from e

    def insert(self, record: AccessToken) -> AccessToken:
        """Persist a new token row and commit.

        Raises:
            DuplicateToken: If the token value is already taken.
            StoreUnavailable: If the database cannot be reached.
        """
        self.db.add(record)
        try:
            self.db.commit()
        except IntegrityError as e:
            self._rollback()
            raise DuplicateToken() from e
        except SQLAlchemyError as e:
            self._rollback()
            logger.exception("Token insert failed")
            raise StoreUnavailable() from e
        return record

    def update_if(self, criteria: dict[str, Any], changes: dict[str, Any]) -> bool:
        """Apply ``changes`` to rows matching ``criteria`` in one UPDATE statement.

        The match and the write happen in the database, so two callers racing
        on the same row cannot both see a match.

        Returns:
            bool: True if at least one row was updated.
        """
        stmt = (
            update(AccessToken)
            .where(*self._where(criteria))
            .values(**changes)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
            self.db.commit()
        except SQLAlchemyError as e:
            self._rollback()
            logger.exception("Conditional token update failed")
            raise StoreUnavailable() from e
        return result.rowcount > 0
