# freshbite_cart/tasks/expire.py
from freshbite_cart.celery_worker import celery_app
from freshbite_cart.data import database
from freshbite_cart.data.models.cart_session import utcnow
from freshbite_cart.repos.cart_repo import CartRepo
from freshbite_cart.utils.logging import get_logger

logger = get_logger(__name__)


@celery_app.task(name="freshbite_cart.tasks.expire.purge_expired_carts_task")
def purge_expired_carts_task() -> int:
    """Delete cart rows whose sliding expiry passed without another write."""
    logger.info("Purge expired carts task started")

    db = database.SessionLocal()
    try:
        repo = CartRepo(db)
        deleted = repo.delete_expired(utcnow())
        repo.commit()
        logger.info(f"Purged {deleted} expired carts")
        return deleted
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
