"""
Stock-aware shopping cart.

The cart is an ordered list of CartEntry values, unique by product id, kept
in memory and written to local storage after every mutation. No entry's
quantity may exceed the stock known when the entry was last changed.
"""
import json
import logging
import os
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Dict, Iterable, List, NamedTuple, Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from results import ErrorKind, Err, Ok, Result
from schemas import CartEntry, Product

load_dotenv()

logger = logging.getLogger(__name__)

CART_STORAGE_KEY = "dairydrop_cart"
CART_STORAGE_PATH = os.getenv("CART_STORAGE_PATH", ".dairydrop_storage.json")
TAX_RATE = Decimal("0.10")


class CartTotals(NamedTuple):
    """Monetary totals of a cart, each rounded to cents."""

    subtotal: Decimal
    tax: Decimal
    total: Decimal


def round_money(amount: Decimal, places: int = 2) -> Decimal:
    """Round to specified decimal places, halves away from zero."""
    quantize_str = "0." + "0" * places
    return amount.quantize(Decimal(quantize_str), rounding=ROUND_HALF_UP)


def to_decimal(value) -> Decimal:
    # str() keeps 2.1 as Decimal("2.1") rather than its binary expansion
    return Decimal(str(value))


class LocalStorage:
    """String key/value storage backed by a JSON file.

    Pass path=None for a session that keeps nothing on disk.
    """

    def __init__(self, path: Optional[str] = CART_STORAGE_PATH):
        self.path = path
        self._data: Dict[str, str] = {}
        if path and os.path.exists(path):
            try:
                with open(path, "r", encoding="utf-8") as fh:
                    loaded = json.load(fh)
            except (OSError, ValueError):
                logger.exception("Could not read local storage at %s, starting empty", path)
                return
            if not isinstance(loaded, dict):
                logger.warning("Local storage at %s is not a JSON object, starting empty", path)
                return
            self._data = {k: v for k, v in loaded.items() if isinstance(v, str)}
            if len(self._data) != len(loaded):
                logger.warning("Dropped non-string values from local storage at %s", path)

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = value
        self._flush()

    def remove_item(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._flush()

    def _flush(self) -> None:
        if not self.path:
            return
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as fh:
            json.dump(self._data, fh)
        os.replace(tmp_path, self.path)


def sanitize_entries(raw_items: Iterable) -> List[CartEntry]:
    """Parse stored entries, keeping only ones that satisfy 0 < quantity <= stock.

    Entries without a stock snapshot take their quantity as stock. Quantities
    above stock are clamped, non-positive ones and duplicates are dropped.
    """
    entries: List[CartEntry] = []
    seen = set()
    for raw in raw_items:
        try:
            entry = raw if isinstance(raw, CartEntry) else CartEntry.model_validate(raw)
        except ValidationError:
            logger.warning("Dropping malformed cart entry: %r", raw)
            continue
        if entry.quantity <= 0 or entry.id in seen:
            continue
        stock = entry.stock if entry.stock is not None else entry.quantity
        if stock <= 0:
            continue
        entries.append(entry.model_copy(update={"stock": stock, "quantity": min(entry.quantity, stock)}))
        seen.add(entry.id)
    return entries


class CartStore:
    """One browsing session's cart.

    All mutation goes through the methods below; `items` hands out copies.
    Listeners registered with `subscribe` are called with the new entry list
    after every mutation, after it has been persisted.
    """

    def __init__(self, storage: Optional[LocalStorage] = None, key: str = CART_STORAGE_KEY):
        self.storage = storage if storage is not None else LocalStorage(path=None)
        self.key = key
        self._entries: List[CartEntry] = []
        self._listeners: List[Callable[[List[CartEntry]], None]] = []
        self.load()

    # Persistence

    def load(self) -> None:
        saved = self.storage.get_item(self.key)
        if not saved:
            self._entries = []
            return
        try:
            raw_items = json.loads(saved)
            if not isinstance(raw_items, list):
                raise ValueError("cart payload is not a list")
        except ValueError:
            logger.exception("Error parsing saved cart, starting with an empty cart")
            self._entries = []
            return
        self._entries = sanitize_entries(raw_items)

    def serialize(self) -> str:
        return json.dumps([entry.model_dump() for entry in self._entries])

    def _commit(self) -> None:
        self.storage.set_item(self.key, self.serialize())
        snapshot = self.items
        for listener in list(self._listeners):
            listener(snapshot)

    def subscribe(self, listener: Callable[[List[CartEntry]], None]) -> Callable[[], None]:
        """Register a change listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # Reads

    @property
    def items(self) -> List[CartEntry]:
        return [entry.model_copy() for entry in self._entries]

    @property
    def cart_count(self) -> int:
        return sum(entry.quantity for entry in self._entries)

    def is_empty(self) -> bool:
        return not self._entries

    def get(self, product_id: str) -> Optional[CartEntry]:
        index = self._index_of(product_id)
        return self._entries[index].model_copy() if index is not None else None

    def _index_of(self, product_id: str) -> Optional[int]:
        for index, entry in enumerate(self._entries):
            if entry.id == product_id:
                return index
        return None

    # Mutations

    def add_to_cart(self, product: Product, requested_qty: int = 1) -> Result:
        if requested_qty <= 0:
            return Err(ErrorKind.VALIDATION, "Quantity must be at least 1")

        index = self._index_of(product.id)
        existing_qty = self._entries[index].quantity if index is not None else 0
        available_stock = product.quantity or 0
        desired_total = existing_qty + requested_qty

        if desired_total > available_stock:
            can_add = available_stock - existing_qty
            if can_add <= 0:
                self._commit_unchanged()
                return Err(
                    ErrorKind.STOCK_LIMIT,
                    "This item is already at maximum available quantity in your cart",
                    {"available_to_add": 0},
                )
            self._set_entry(index, product, available_stock, available_stock)
            self._commit()
            return Ok(
                message=f"Only {can_add} item(s) available. Added maximum quantity to cart.",
                details={"available_to_add": can_add},
            )

        self._set_entry(index, product, desired_total, available_stock)
        self._commit()
        return Ok(message="Added to cart successfully", details={"available_to_add": requested_qty})

    def _set_entry(self, index: Optional[int], product: Product, quantity: int, stock: int) -> None:
        if index is None:
            self._entries.append(CartEntry(
                id=product.id,
                name=product.name,
                price=product.price,
                image_url=product.image_url,
                quantity=quantity,
                stock=stock,
            ))
        else:
            self._entries[index] = self._entries[index].model_copy(
                update={"quantity": quantity, "stock": stock}
            )

    def _commit_unchanged(self) -> None:
        # refused adds still write local storage but do not notify listeners
        self.storage.set_item(self.key, self.serialize())

    def remove_from_cart(self, product_id: str) -> Result:
        index = self._index_of(product_id)
        if index is not None:
            del self._entries[index]
            self._commit()
        return Ok()

    def update_cart_item(self, product_id: str, new_qty: int) -> Result:
        if new_qty <= 0:
            return self.remove_from_cart(product_id)

        index = self._index_of(product_id)
        if index is None:
            return Err(ErrorKind.NOT_FOUND, "Item not found in cart")

        entry = self._entries[index]
        available_stock = entry.stock if entry.stock is not None else entry.quantity
        if new_qty > available_stock:
            return Err(
                ErrorKind.STOCK_LIMIT,
                f"Only {available_stock} item(s) available in stock",
                {"max_quantity": available_stock},
            )

        self._entries[index] = entry.model_copy(update={"quantity": new_qty})
        self._commit()
        return Ok()

    def clear_cart(self) -> None:
        self._entries = []
        self._commit()

    def replace_items(self, raw_items: Iterable) -> None:
        """Replace the whole cart, e.g. when seeding from a remote snapshot."""
        self._entries = sanitize_entries(raw_items)
        self._commit()

    def calculate_totals(self) -> CartTotals:
        subtotal = sum(
            (to_decimal(entry.price) * entry.quantity for entry in self._entries),
            Decimal("0"),
        )
        tax = subtotal * TAX_RATE
        total = subtotal + tax
        return CartTotals(
            subtotal=round_money(subtotal),
            tax=round_money(tax),
            total=round_money(total),
        )
