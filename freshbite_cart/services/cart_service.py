import secrets
import time
from typing import Any, List, Mapping

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from freshbite_cart.data.models.cart_session import CartSessionModel
from freshbite_cart.domain.schemas import CartItemDraft, CartLineItem
from freshbite_cart.repos.cart_repo import CartRepo
from freshbite_cart.utils.errors import (
    ERROR_CART_WRITE,
    CartConflictError,
    CartStoreError,
    ValidationError,
)
from freshbite_cart.utils.logging import get_logger
from freshbite_cart.utils.retry import cart_write_retry
from freshbite_cart.utils.settings import CART_WRITE_ATTEMPTS

logger = get_logger(__name__)


def new_line_item_id(draft: CartItemDraft) -> str:
    # random suffix keeps ids unique for two adds of the same dish in the same ms
    millis = int(time.time() * 1000)
    return f"{draft.dish_id}-{draft.variant_id or 'default'}-{millis}-{secrets.token_hex(4)}"


def is_same_entry(item: CartLineItem, draft: CartItemDraft) -> bool:
    # no variant on both sides counts as a match
    return item.dish_id == draft.dish_id and item.variant_id == draft.variant_id


def merge_line_item(items: List[CartLineItem], draft: CartItemDraft) -> List[CartLineItem]:
    """
    Adds draft to items: bumps quantity of the matching (dish, variant) entry,
    otherwise appends a new line item. Name/price/image of an existing entry
    are kept, the first add wins.
    """
    merged = []
    found = False
    for item in items:
        if not found and is_same_entry(item, draft):
            item = item.model_copy(update={"quantity": item.quantity + draft.quantity})
            found = True
        merged.append(item)

    if not found:
        merged.append(CartLineItem(id=new_line_item_id(draft), **draft.model_dump()))

    return merged


def dump_items(items: List[CartLineItem]) -> list[dict]:
    return [item.model_dump(by_alias=True, exclude_none=True) for item in items]


class CartService:
    """
    Cart Mutation Engine, one instance per request.

    query: get_cart, count_items
    commands: add_item, set_quantity, remove_item, clear

    Rows are never left with an empty items list: the row is deleted instead
    and created again lazily by the next add.
    """

    def __init__(self, db: Session):
        self.repo = CartRepo(db)

    #query
    def get_cart(self, session_id: str) -> List[CartLineItem]:
        # read errors are reported as an empty cart, availability over strictness
        try:
            row = self.repo.get_cart_session(session_id)
        except SQLAlchemyError as e:
            self.repo.rollback()
            logger.warning(f"Reading cart {session_id} failed, returning empty cart: {e}")
            return []

        if row is None:
            return []
        return self._load_items(row)

    def count_items(self, session_id: str) -> int:
        return sum(item.quantity for item in self.get_cart(session_id))

    #commands
    def add_item(self, session_id: str, draft: CartItemDraft | Mapping[str, Any]) -> List[CartLineItem]:
        self._require_session(session_id)
        draft = self._validate_draft(draft)

        try:
            return self._merge_and_write(session_id, draft)
        except (CartConflictError, SQLAlchemyError) as e:
            logger.error(
                f"Adding dish {draft.dish_id} to cart {session_id} failed "
                f"after {CART_WRITE_ATTEMPTS} attempts: {e}"
            )
            raise CartStoreError(ERROR_CART_WRITE) from e

    def set_quantity(self, session_id: str, item_id: str, quantity: int) -> List[CartLineItem]:
        self._require_session(session_id)
        if not isinstance(quantity, int) or isinstance(quantity, bool):
            raise ValidationError("Quantity must be an integer")

        if quantity <= 0:
            return self.remove_item(session_id, item_id)

        row = self._read_for_write(session_id)
        if row is None:
            return []

        items = self._load_items(row)
        if not any(item.id == item_id for item in items):
            logger.info(f"Item {item_id} not in cart {session_id}, quantity unchanged")
            return items

        updated = [
            item.model_copy(update={"quantity": quantity}) if item.id == item_id else item
            for item in items
        ]
        return self._write(session_id, updated)

    def remove_item(self, session_id: str, item_id: str) -> List[CartLineItem]:
        self._require_session(session_id)

        row = self._read_for_write(session_id)
        if row is None:
            return []

        items = self._load_items(row)
        remaining = [item for item in items if item.id != item_id]
        if len(remaining) == len(items):
            logger.info(f"Item {item_id} not in cart {session_id}, nothing to remove")
            return items

        logger.info(f"Removing item {item_id} from cart {session_id}")
        return self._write(session_id, remaining)

    def clear(self, session_id: str) -> List[CartLineItem]:
        self._require_session(session_id)
        try:
            deleted = self.repo.delete_cart_session(session_id)
            self.repo.commit()
        except SQLAlchemyError as e:
            self.repo.rollback()
            logger.error(f"Clearing cart {session_id} failed: {e}")
            raise CartStoreError(ERROR_CART_WRITE) from e

        logger.info(f"Cleared cart {session_id} (rows deleted: {deleted})")
        return []

    #internals
    @cart_write_retry()
    def _merge_and_write(self, session_id: str, draft: CartItemDraft) -> List[CartLineItem]:
        """
        One attempt of read-merge-write. Existing row: compare-and-swap on version.
        No row: insert, a concurrent insert fails on the unique session_id.
        Both losers raise CartConflictError and the decorator re-runs the cycle.
        """
        try:
            row = self.repo.get_cart_session(session_id)
            current = self._load_items(row) if row is not None else []
            merged = merge_line_item(current, draft)

            if row is None:
                self.repo.insert_cart_session(session_id, dump_items(merged))
                logger.info(f"Created cart {session_id} with dish {draft.dish_id}")
            else:
                rowcount = self.repo.update_cart_items(
                    session_id,
                    dump_items(merged),
                    expected_version=row.version,
                )
                if rowcount == 0:
                    raise CartConflictError(
                        f"Cart {session_id} changed since version {row.version}"
                    )
                logger.info(
                    f"Added dish {draft.dish_id} x{draft.quantity} to cart {session_id}, "
                    f"new version: {row.version + 1}"
                )

            self.repo.commit()
        except (CartConflictError, SQLAlchemyError) as e:
            self.repo.rollback()
            logger.warning(f"Write to cart {session_id} lost: {e}")
            raise

        return merged

    def _read_for_write(self, session_id: str) -> CartSessionModel | None:
        try:
            return self.repo.get_cart_session(session_id)
        except SQLAlchemyError as e:
            self.repo.rollback()
            logger.error(f"Reading cart {session_id} before write failed: {e}")
            raise CartStoreError(ERROR_CART_WRITE) from e

    def _write(self, session_id: str, items: List[CartLineItem]) -> List[CartLineItem]:
        # last write wins here, version is still bumped so a concurrent add retries
        try:
            if items:
                rowcount = self.repo.update_cart_items(session_id, dump_items(items))
            else:
                rowcount = self.repo.delete_cart_session(session_id)
            self.repo.commit()
        except SQLAlchemyError as e:
            self.repo.rollback()
            logger.error(f"Writing cart {session_id} failed: {e}")
            raise CartStoreError(ERROR_CART_WRITE) from e

        if rowcount == 0:
            logger.info(f"Cart {session_id} disappeared before write (cleared concurrently)")
            return []
        return items

    def _load_items(self, row: CartSessionModel) -> List[CartLineItem]:
        items = []
        for raw in row.items or []:
            try:
                items.append(CartLineItem.model_validate(raw))
            except PydanticValidationError as e:
                logger.warning(f"Dropping malformed line item in cart {row.session_id}: {e}")
        return items

    @staticmethod
    def _validate_draft(draft: CartItemDraft | Mapping[str, Any]) -> CartItemDraft:
        if isinstance(draft, CartItemDraft):
            return draft
        try:
            return CartItemDraft.model_validate(draft)
        except PydanticValidationError as e:
            fields = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})
            raise ValidationError(f"Invalid cart item fields: {', '.join(fields)}") from e

    @staticmethod
    def _require_session(session_id: str) -> None:
        if not session_id:
            raise ValidationError("Missing cart session")
