#import all models so SQLAlchemy registers them in Base.metadata

from freshbite_cart.data.models.cart_session import CartSessionModel

__all__ = ["CartSessionModel"]
