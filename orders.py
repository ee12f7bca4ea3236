"""
Order placement and order status transitions.

Placement turns the live cart into an immutable Pending order, then
decrements stock for each line and clears the cart. Only order creation is
critical: a failed stock decrement is logged for manual reconciliation and
the order still stands.
"""
import logging
import re
import threading
from typing import Dict, Optional

from cart import CartStore
from results import ErrorKind, Err, Ok, Result
from schemas import CustomerInfo, OrderStatus

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PHONE_DIGITS = 10
PAYMENT_METHOD = "COD"

# forward moves only; Cancelled is reachable from every non-terminal status
ORDER_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}


def validate_checkout(form: CustomerInfo) -> Dict[str, str]:
    """Return field-keyed error messages; empty when the form is valid."""
    errors: Dict[str, str] = {}

    if not form.full_name.strip():
        errors["full_name"] = "Full name is required"
    if not form.email.strip():
        errors["email"] = "Email is required"
    elif not EMAIL_RE.match(form.email):
        errors["email"] = "Please enter a valid email"
    if not form.phone.strip():
        errors["phone"] = "Phone number is required"
    elif len(re.sub(r"\D", "", form.phone)) < MIN_PHONE_DIGITS:
        errors["phone"] = "Please enter a valid phone number (10+ digits)"
    if not form.address.strip():
        errors["address"] = "Street address is required"
    if not form.city.strip():
        errors["city"] = "City is required"
    if not form.postal_code.strip():
        errors["postal_code"] = "Postal code is required"

    return errors


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    return new in ORDER_TRANSITIONS.get(current, set())


def transition_order_status(data_service, order_id: str, new_status: OrderStatus) -> Result:
    """Move an order to `new_status` if the state machine allows it."""
    found = data_service.get_order_by_id(order_id)
    if not found.success:
        return found
    current = found.value.status
    if not can_transition(current, new_status):
        return Err(
            ErrorKind.INVALID_TRANSITION,
            f"Cannot change order status from {current.value} to {new_status.value}",
            {"current_status": current.value},
        )
    result = data_service.update_order_status(order_id, new_status, expected=current)
    if result.success:
        logger.info("Order %s moved from %s to %s", order_id, current.value, new_status.value)
    return result


class OrderPlacement:
    """Checkout for one session's cart.

    A second `place_order` while one is still running is refused rather than
    queued, so a double submit cannot create two orders.
    """

    def __init__(self, cart: CartStore, data_service):
        self.cart = cart
        self.data_service = data_service
        self._in_flight = threading.Lock()

    @property
    def in_flight(self) -> bool:
        return self._in_flight.locked()

    def place_order(self, user_id: str, form: CustomerInfo, payment_method: str = PAYMENT_METHOD) -> Result:
        if not self._in_flight.acquire(blocking=False):
            return Err(ErrorKind.IN_FLIGHT, "Your order is already being placed")
        try:
            return self._place(user_id, form, payment_method)
        finally:
            self._in_flight.release()

    def _place(self, user_id: str, form: CustomerInfo, payment_method: str) -> Result:
        if self.cart.is_empty():
            return Err(ErrorKind.VALIDATION, "Your cart is empty", {"errors": {"cart": "Your cart is empty"}})

        errors = validate_checkout(form)
        if errors:
            return Err(ErrorKind.VALIDATION, "Please correct the highlighted fields", {"errors": errors})

        items = self.cart.items
        totals = self.cart.calculate_totals()
        order_data = {
            "user_id": user_id,
            "items": [item.model_dump() for item in items],
            "customer_info": form.model_dump(),
            "subtotal": float(totals.subtotal),
            "tax": float(totals.tax),
            "total": float(totals.total),
            "payment_method": payment_method,
            "status": OrderStatus.PENDING.value,
        }

        created = self.data_service.create_order(order_data)
        if not created.success:
            logger.error("Order creation failed for user %s: %s", user_id, created.message)
            return Err(ErrorKind.REMOTE, "Failed to place order. Please try again.")
        order_id = created.value

        for item in items:
            self._decrement_stock(order_id, item.id, item.quantity)

        self.cart.clear_cart()
        logger.info("Order %s placed for user %s, total %s", order_id, user_id, totals.total)
        return Ok(
            value=order_id,
            message="Order placed successfully!",
            details={"subtotal": totals.subtotal, "tax": totals.tax, "total": totals.total},
        )

    def _decrement_stock(self, order_id: str, product_id: str, quantity: int) -> Optional[int]:
        try:
            result = self.data_service.decrement_product_stock(product_id, quantity)
        except Exception as e:
            logger.exception(
                f"Stock decrement raised for order {order_id}, product {product_id} x{quantity}: {e}"
            )
            return None
        if not result.success:
            logger.warning(
                "Stock decrement failed for order %s, product %s x%d, needs reconciliation: %s",
                order_id, product_id, quantity, result.message,
            )
            return None
        return result.value
