# freshbite_cart/services/session_service.py
import re
import secrets
import time

from fastapi import Request, Response

from freshbite_cart.utils.settings import CART_COOKIE_NAME, CART_TTL_SECONDS, IS_PRODUCTION
from freshbite_cart.utils.logging import get_logger

logger = get_logger(__name__)

_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def mint_session_id() -> str:
    # time part + 128 bits of randomness, not guessable
    return f"cart_{int(time.time() * 1000)}_{secrets.token_urlsafe(16)}"


def is_valid_session_id(value: str | None) -> bool:
    return bool(value) and bool(_SESSION_ID_RE.match(value))


class SessionIdentityResolver:
    """
    Reads the cart session cookie or mints a new one.
    Never fails: a missing or malformed cookie just means a fresh session.
    """

    def __init__(
        self,
        cookie_name: str = CART_COOKIE_NAME,
        max_age: int = CART_TTL_SECONDS,
        secure: bool = IS_PRODUCTION,
    ):
        self.cookie_name = cookie_name
        self.max_age = max_age
        self.secure = secure

    def resolve(self, request: Request, response: Response) -> str:
        session_id = request.cookies.get(self.cookie_name)
        if is_valid_session_id(session_id):
            return session_id

        session_id = mint_session_id()
        response.set_cookie(
            key=self.cookie_name,
            value=session_id,
            max_age=self.max_age,
            path="/",
            httponly=True,
            secure=self.secure,
            samesite="lax",
        )
        logger.info("Issued new cart session")
        return session_id


resolver = SessionIdentityResolver()


def get_session_id(request: Request, response: Response) -> str:
    return resolver.resolve(request, response)
