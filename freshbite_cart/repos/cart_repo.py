# freshbite_cart/repos/cart_repo.py
import secrets
import time
from datetime import datetime, timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from freshbite_cart.data.models.cart_session import CartSessionModel, utcnow
from freshbite_cart.utils.errors import CartConflictError
from freshbite_cart.utils.settings import CART_TTL_SECONDS


def new_row_id() -> str:
    return f"cart_{int(time.time() * 1000)}_{secrets.token_hex(6)}"


class CartRepo:
    """
    Cart Store: session_id -> row with JSON items.
    Writes are not committed here, the service decides when to commit/rollback.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_cart_session(self, session_id: str) -> CartSessionModel | None:
        # populate_existing: re-read the row even if it sits in the identity map,
        # a retry must see what the other writer committed
        stmt = (
            select(CartSessionModel)
            .where(CartSessionModel.session_id == session_id)
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def insert_cart_session(self, session_id: str, items: list[dict]) -> CartSessionModel:
        now = utcnow()
        row = CartSessionModel(
            id=new_row_id(),
            session_id=session_id,
            items=items,
            version=1,
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(seconds=CART_TTL_SECONDS),
        )
        self.db.add(row)
        try:
            self.db.flush()
        except IntegrityError as e:
            # another request created the row between our read and insert
            raise CartConflictError(f"Cart session {session_id} was created concurrently") from e
        return row

    def update_cart_items(
        self,
        session_id: str,
        items: list[dict],
        expected_version: int | None = None,
    ) -> int:
        """
        UPDATE ... SET items, version+1, updated_at, expires_at WHERE session_id
        [AND version = expected_version]. created_at is never written.
        Returns rowcount, 0 with expected_version means a lost race.
        """
        now = utcnow()
        stmt = update(CartSessionModel).where(CartSessionModel.session_id == session_id)
        if expected_version is not None:
            stmt = stmt.where(CartSessionModel.version == expected_version)

        stmt = stmt.values(
            items=items,
            version=CartSessionModel.version + 1,
            updated_at=now,
            expires_at=now + timedelta(seconds=CART_TTL_SECONDS),
        ).execution_options(synchronize_session=False)

        return self.db.execute(stmt).rowcount

    def delete_cart_session(self, session_id: str) -> int:
        stmt = delete(CartSessionModel).where(CartSessionModel.session_id == session_id)
        return self.db.execute(stmt.execution_options(synchronize_session=False)).rowcount

    def delete_expired(self, now: datetime) -> int:
        stmt = delete(CartSessionModel).where(CartSessionModel.expires_at < now)
        return self.db.execute(stmt.execution_options(synchronize_session=False)).rowcount

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()
