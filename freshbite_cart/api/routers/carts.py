#freshbite_cart/api/routers/carts.py
from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from freshbite_cart.data.database import get_db
from freshbite_cart.domain.schemas import (
    CartCountOut,
    CartItemDraft,
    CartOut,
    ErrorOut,
    UpdateQuantityIn,
)
from freshbite_cart.services.cart_service import CartService
from freshbite_cart.services.rate_limit_service import cart_rate_limit, read_rate_limit
from freshbite_cart.services.session_service import get_session_id
from freshbite_cart.utils.errors import ValidationError
from freshbite_cart.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(
    prefix="/cart",
    tags=["cart"],
    responses={
        400: {"model": ErrorOut},
        429: {"model": ErrorOut},
        500: {"model": ErrorOut},
    },
)

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate",
    "Pragma": "no-cache",
}


def get_service(db: Session):
    return CartService(db)


def no_store(response: Response) -> None:
    # cart state must never come from an intermediary cache (multi tab / device)
    response.headers.update(NO_STORE_HEADERS)


@router.get(
    "",
    response_model=CartOut,
    response_model_exclude_none=True,
    dependencies=[Depends(read_rate_limit), Depends(no_store)],
)
def get_cart(
    session_id: str = Depends(get_session_id),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    return {"cart": svc.get_cart(session_id)}


@router.get(
    "/count",
    response_model=CartCountOut,
    dependencies=[Depends(read_rate_limit), Depends(no_store)],
)
def get_cart_count(
    session_id: str = Depends(get_session_id),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    return {"count": svc.count_items(session_id)}


@router.post(
    "",
    response_model=CartOut,
    response_model_exclude_none=True,
    dependencies=[Depends(cart_rate_limit), Depends(no_store)],
)
def add_item(
    payload: CartItemDraft,
    session_id: str = Depends(get_session_id),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    return {"cart": svc.add_item(session_id, payload), "success": True}


@router.put(
    "",
    response_model=CartOut,
    response_model_exclude_none=True,
    dependencies=[Depends(cart_rate_limit), Depends(no_store)],
)
def update_quantity(
    payload: UpdateQuantityIn,
    session_id: str = Depends(get_session_id),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    cart = svc.set_quantity(session_id, payload.item_id, payload.quantity)
    return {"cart": cart, "success": True}


@router.delete(
    "",
    response_model=CartOut,
    response_model_exclude_none=True,
    dependencies=[Depends(cart_rate_limit), Depends(no_store)],
)
def remove_item(
    item_id: str | None = Query(default=None, alias="itemId"),
    clear: str | None = Query(default=None),
    session_id: str = Depends(get_session_id),
    db: Session = Depends(get_db),
):
    svc = get_service(db)

    # only the literal "true" clears, "1" or "yes" do not
    if clear == "true":
        return {"cart": svc.clear(session_id), "success": True}

    if not item_id:
        raise ValidationError("Missing itemId parameter")

    cart = svc.remove_item(session_id, item_id)

    #verify read, the backend may still show the item right after the write
    verify = svc.get_cart(session_id)
    if any(item.id == item_id for item in verify):
        logger.error(f"Item {item_id} still in cart {session_id} after removal, retrying")
        cart = svc.remove_item(session_id, item_id)

    return {"cart": cart, "success": True}
