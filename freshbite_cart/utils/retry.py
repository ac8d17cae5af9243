# freshbite_cart/utils/retry.py
import logging

import redis
from sqlalchemy.exc import SQLAlchemyError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from freshbite_cart.utils.errors import CartConflictError
from freshbite_cart.utils.logging import get_logger
from freshbite_cart.utils.settings import CART_RETRY_BACKOFF_SECONDS, CART_WRITE_ATTEMPTS

logger = get_logger(__name__)


def cart_write_retry():
    # whole read-merge-write cycle is retried, so each attempt re-reads the row
    # backoff: base, 2*base, 4*base ... capped at 1s
    return retry(
        reraise=True,
        stop=stop_after_attempt(CART_WRITE_ATTEMPTS),
        wait=wait_exponential(
            multiplier=CART_RETRY_BACKOFF_SECONDS,
            min=CART_RETRY_BACKOFF_SECONDS,
            max=1,
        ),
        retry=retry_if_exception_type((CartConflictError, SQLAlchemyError)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
    )


def redis_retry():
    return retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type(redis.RedisError),
    )
