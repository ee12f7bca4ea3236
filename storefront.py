"""
One shopper's browsing session: cart store, remote mirror and checkout.

Components are built here and handed to each other explicitly; nothing is
module-global.
"""
import logging
from typing import Optional

from cart import CartStore, LocalStorage
from cart_mirror import RemoteCartMirror
from orders import OrderPlacement
from results import ErrorKind, Err, Result
from schemas import CustomerInfo

logger = logging.getLogger(__name__)


class StorefrontSession:
    def __init__(self, data_service, storage: Optional[LocalStorage] = None):
        self.data_service = data_service
        self.cart = CartStore(storage=storage)
        self.mirror = RemoteCartMirror(self.cart, data_service)
        self.checkout = OrderPlacement(self.cart, data_service)
        self.user_id: Optional[str] = None

    def login(self, user_id: str) -> None:
        self.user_id = user_id
        self.mirror.attach(user_id)
        logger.info("Session attached to user %s", user_id)

    def logout(self) -> None:
        self.mirror.flush()
        self.mirror.detach()
        self.user_id = None

    def add_product(self, product_id: str, quantity: int = 1) -> Result:
        """Fetch the live product record and add it to the cart."""
        found = self.data_service.get_product_by_id(product_id)
        if not found.success:
            return found
        return self.cart.add_to_cart(found.value, quantity)

    def place_order(self, form: CustomerInfo) -> Result:
        if self.user_id is None:
            return Err(ErrorKind.VALIDATION, "Please log in to place an order")
        return self.checkout.place_order(self.user_id, form)

    def close(self) -> None:
        self.mirror.close()
