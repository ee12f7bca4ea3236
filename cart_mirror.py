"""
Best-effort mirror of a session cart to the user's remote cart snapshot.

The local CartStore is always authoritative. The remote snapshot is read
once, when a user attaches (logs in), and only seeds an empty local cart.
After that every local change schedules a remote write on a single worker
thread; failures are logged and never reach the cart operation that caused
them.
"""
import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import List, Optional

from cart import CartStore
from schemas import CartEntry

logger = logging.getLogger(__name__)


class RemoteCartMirror:
    def __init__(self, cart: CartStore, data_service):
        self.cart = cart
        self.data_service = data_service
        self.user_id: Optional[str] = None
        # one worker keeps remote writes in local mutation order
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="cart-mirror")
        self._pending: List[Future] = []
        self._unsubscribe = cart.subscribe(self._on_cart_change)

    def attach(self, user_id: str) -> None:
        """Start mirroring for `user_id`, seeding an empty local cart from its snapshot."""
        self.user_id = user_id
        if not self.cart.is_empty():
            self._schedule(user_id, self.cart.items)
            return

        try:
            result = self.data_service.get_cart_snapshot(user_id)
        except Exception as e:
            logger.exception(f"Error loading cart snapshot for {user_id}: {e}")
            return
        if not result.success:
            logger.error("Error loading cart snapshot for %s: %s", user_id, result.message)
            return
        if result.value and self.cart.is_empty():
            # triggers _on_cart_change, which writes the sanitised cart back
            self.cart.replace_items(result.value)

    def detach(self) -> None:
        self.user_id = None

    def _on_cart_change(self, items: List[CartEntry]) -> None:
        if self.user_id is None:
            return
        self._schedule(self.user_id, items)

    def _schedule(self, user_id: str, items: List[CartEntry]) -> None:
        self._pending = [f for f in self._pending if not f.done()]
        self._pending.append(self._executor.submit(self._sync, user_id, items))

    def _sync(self, user_id: str, items: List[CartEntry]) -> None:
        try:
            if items:
                result = self.data_service.put_cart_snapshot(user_id, items)
            else:
                result = self.data_service.delete_cart_snapshot(user_id)
        except Exception as e:
            # Never fail the cart operation if the mirror write fails
            logger.exception(f"Error syncing cart for {user_id}: {e}")
            return
        if not result.success:
            logger.error("Error syncing cart for %s: %s", user_id, result.message)

    def flush(self, timeout: Optional[float] = None) -> None:
        """Block until every scheduled write has finished."""
        wait(list(self._pending), timeout=timeout)

    def close(self) -> None:
        self._unsubscribe()
        self._executor.shutdown(wait=True)
