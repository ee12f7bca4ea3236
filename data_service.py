"""
Remote data operations used by the storefront core, backed by MongoDB.

Every method returns an Ok/Err result. Store errors and malformed ids are
turned into Err values here so callers never see pymongo exceptions.
"""
import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError
from pydantic import ValidationError

from cart import round_money, to_decimal
from database import create_document, get_documents, utcnow
from results import ErrorKind, Err, Ok, Result
from reviews import fold_rating
from schemas import Address, CartEntry, Order, OrderStatus, Product, Review, User

logger = logging.getLogger(__name__)

PRODUCT_FIELDS = {"name", "description", "price", "quantity", "category", "image_url"}
PROFILE_FIELDS = {"name", "phone"}
STOCK_WRITE_ATTEMPTS = 3


def to_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def serialize(doc: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(doc)
    out["id"] = str(out.pop("_id"))
    return out


def remote_error(action: str, exc: Exception) -> Err:
    logger.exception("Error %s: %s", action, exc)
    return Err(ErrorKind.REMOTE, f"Failed {action}: {exc}")


def parse_document(model, doc: Dict[str, Any], label: str) -> Result:
    try:
        return Ok(value=model(**serialize(doc)))
    except ValidationError:
        logger.warning("Malformed %s record %s", label, doc.get("_id"))
        return Err(ErrorKind.REMOTE, f"Invalid {label} record")


def parse_documents(model, docs: List[Dict[str, Any]], label: str) -> list:
    """Parse a listing, skipping records that no longer fit the model."""
    parsed = []
    for doc in docs:
        result = parse_document(model, doc, label)
        if result.success:
            parsed.append(result.value)
    return parsed


def public_user(doc: Dict[str, Any]) -> Result:
    try:
        user = User(**doc)
    except ValidationError:
        logger.warning("User record %s is malformed", doc.get("_id"))
        return Err(ErrorKind.VALIDATION, "Invalid user record")
    return Ok(value={"id": str(doc["_id"]), **user.model_dump()})


class MongoDataService:
    """Storefront operations against a pymongo database.

    `client` is the MongoClient owning `db`; it is only needed for the
    review approval transaction.
    """

    def __init__(self, db, client=None):
        self.db = db
        self.client = client

    # Products

    def get_product_by_id(self, product_id: str) -> Result:
        oid = to_object_id(product_id)
        if oid is None:
            return Err(ErrorKind.NOT_FOUND, "Product not found")
        try:
            doc = self.db["product"].find_one({"_id": oid})
        except PyMongoError as e:
            return remote_error("fetching product", e)
        if not doc:
            return Err(ErrorKind.NOT_FOUND, "Product not found")
        return parse_document(Product, doc, "product")

    def get_products(self, category: Optional[str] = None) -> Result:
        query: Dict[str, Any] = {}
        if category:
            query["category"] = category
        try:
            docs = get_documents("product", query, sort=[("name", 1)], database=self.db)
        except PyMongoError as e:
            return remote_error("listing products", e)
        return Ok(value=parse_documents(Product, docs, "product"))

    def create_product(self, data: Dict[str, Any]) -> Result:
        doc = {k: v for k, v in data.items() if k in PRODUCT_FIELDS}
        doc.update({"rating_avg": None, "rating_count": 0})
        try:
            product_id = create_document("product", doc, database=self.db)
        except PyMongoError as e:
            return remote_error("creating product", e)
        return Ok(value=product_id)

    def update_product(self, product_id: str, data: Dict[str, Any]) -> Result:
        oid = to_object_id(product_id)
        if oid is None:
            return Err(ErrorKind.NOT_FOUND, "Product not found")
        # the rating aggregate is owned by the approval transaction
        update = {k: v for k, v in data.items() if k in PRODUCT_FIELDS}
        update["updated_at"] = utcnow()
        try:
            doc = self.db["product"].find_one_and_update(
                {"_id": oid}, {"$set": update}, return_document=ReturnDocument.AFTER
            )
        except PyMongoError as e:
            return remote_error("updating product", e)
        if not doc:
            return Err(ErrorKind.NOT_FOUND, "Product not found")
        return parse_document(Product, doc, "product")

    def delete_product(self, product_id: str) -> Result:
        oid = to_object_id(product_id)
        if oid is None:
            return Err(ErrorKind.NOT_FOUND, "Product not found")
        try:
            res = self.db["product"].delete_one({"_id": oid})
        except PyMongoError as e:
            return remote_error("deleting product", e)
        if res.deleted_count == 0:
            return Err(ErrorKind.NOT_FOUND, "Product not found")
        return Ok()

    def decrement_product_stock(self, product_id: str, delta: int) -> Result:
        """Subtract `delta` units from stock, flooring at zero.

        Each attempt is a single conditional write, so stored stock is never
        negative. Not transactional across orders: concurrent orders may
        oversell, which is logged for reconciliation instead of prevented.
        """
        oid = to_object_id(product_id)
        if oid is None:
            return Err(ErrorKind.NOT_FOUND, "Product not found")
        products = self.db["product"]
        try:
            for _ in range(STOCK_WRITE_ATTEMPTS):
                doc = products.find_one_and_update(
                    {"_id": oid, "quantity": {"$gte": delta}},
                    {"$inc": {"quantity": -delta}, "$set": {"updated_at": utcnow()}},
                    return_document=ReturnDocument.AFTER,
                )
                if doc:
                    return Ok(value=doc["quantity"])

                before = products.find_one_and_update(
                    {"_id": oid, "quantity": {"$lt": delta}},
                    {"$set": {"quantity": 0, "updated_at": utcnow()}},
                    return_document=ReturnDocument.BEFORE,
                )
                if before:
                    logger.warning(
                        "Oversold product %s by %d unit(s), flooring stock at 0",
                        product_id, delta - before.get("quantity", 0),
                    )
                    return Ok(value=0)

                if products.find_one({"_id": oid}, {"_id": 1}) is None:
                    return Err(ErrorKind.NOT_FOUND, "Product not found")
                # restocked between the two writes
        except PyMongoError as e:
            return remote_error("decrementing stock", e)
        return Err(ErrorKind.REMOTE, "Stock kept changing, decrement not applied")

    # Reviews

    def run_rating_approval_transaction(self, review_id: str) -> Result:
        """Approve a review and fold its rating into the product, atomically.

        Runs inside a multi-document transaction; with_transaction retries the
        whole read-compute-write unit when it hits a write conflict with a
        concurrent approval on the same product.
        """
        oid = to_object_id(review_id)
        if oid is None:
            return Err(ErrorKind.NOT_FOUND, "Review not found")
        if self.client is None:
            return Err(ErrorKind.REMOTE, "Database client not available for transactions")
        try:
            with self.client.start_session() as session:
                return session.with_transaction(lambda s: self._approve_review(oid, s))
        except PyMongoError as e:
            return remote_error("approving review", e)

    def _approve_review(self, review_oid: ObjectId, session) -> Result:
        review = self.db["review"].find_one({"_id": review_oid}, session=session)
        if not review:
            return Err(ErrorKind.NOT_FOUND, "Review not found")
        if review.get("approved"):
            return Ok(message="Review already approved")

        rating = review.get("rating")
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            logger.warning("Review %s has no usable rating: %r", review_oid, rating)
            return Err(ErrorKind.VALIDATION, "Review has no valid rating")

        product_oid = to_object_id(review.get("product_id"))
        product = None
        if product_oid is not None:
            product = self.db["product"].find_one({"_id": product_oid}, session=session)
        if not product:
            return Err(ErrorKind.NOT_FOUND, "Product not found")

        rating_avg, rating_count = fold_rating(
            product.get("rating_avg"), product.get("rating_count", 0), rating
        )
        now = utcnow()
        self.db["review"].update_one(
            {"_id": review_oid},
            {"$set": {"approved": True, "approved_at": now}},
            session=session,
        )
        self.db["product"].update_one(
            {"_id": product_oid},
            {"$set": {"rating_avg": rating_avg, "rating_count": rating_count, "updated_at": now}},
            session=session,
        )
        logger.info(
            "Approved review %s, product %s now %.4f over %d review(s)",
            review_oid, product_oid, rating_avg, rating_count,
        )
        return Ok(value={"rating_avg": rating_avg, "rating_count": rating_count})

    def add_review(self, data: Dict[str, Any]) -> Result:
        try:
            review = Review(**data)
        except ValidationError as e:
            return Err(ErrorKind.VALIDATION, "Invalid review", {"errors": {str(err["loc"][0]): err["msg"] for err in e.errors()}})
        doc = review.model_dump(exclude={"id", "approved", "approved_at", "created_at", "updated_at"})
        doc["approved"] = False
        try:
            review_id = create_document("review", doc, database=self.db)
        except PyMongoError as e:
            return remote_error("adding review", e)
        return Ok(value=review_id)

    def get_review_by_id(self, review_id: str) -> Result:
        oid = to_object_id(review_id)
        if oid is None:
            return Err(ErrorKind.NOT_FOUND, "Review not found")
        try:
            doc = self.db["review"].find_one({"_id": oid})
        except PyMongoError as e:
            return remote_error("fetching review", e)
        if not doc:
            return Err(ErrorKind.NOT_FOUND, "Review not found")
        return parse_document(Review, doc, "review")

    def get_product_reviews(self, product_id: str, approved_only: bool = False) -> Result:
        query: Dict[str, Any] = {"product_id": product_id}
        if approved_only:
            query["approved"] = True
        return self._list_reviews(query)

    def get_all_reviews(self) -> Result:
        return self._list_reviews({})

    def _list_reviews(self, query: Dict[str, Any]) -> Result:
        try:
            docs = get_documents("review", query, sort=[("created_at", -1)], database=self.db)
        except PyMongoError as e:
            return remote_error("listing reviews", e)
        return Ok(value=parse_documents(Review, docs, "review"))

    def update_review_content(self, review_id: str, comment: str) -> Result:
        oid = to_object_id(review_id)
        if oid is None:
            return Err(ErrorKind.NOT_FOUND, "Review not found")
        try:
            res = self.db["review"].update_one(
                {"_id": oid}, {"$set": {"comment": comment, "updated_at": utcnow()}}
            )
        except PyMongoError as e:
            return remote_error("updating review", e)
        if res.matched_count == 0:
            return Err(ErrorKind.NOT_FOUND, "Review not found")
        return Ok()

    def delete_review(self, review_id: str) -> Result:
        oid = to_object_id(review_id)
        if oid is None:
            return Err(ErrorKind.NOT_FOUND, "Review not found")
        try:
            res = self.db["review"].delete_one({"_id": oid})
        except PyMongoError as e:
            return remote_error("deleting review", e)
        if res.deleted_count == 0:
            return Err(ErrorKind.NOT_FOUND, "Review not found")
        return Ok()

    # Orders

    def create_order(self, order_data: Dict[str, Any]) -> Result:
        doc = dict(order_data)
        doc["status"] = OrderStatus.PENDING.value
        doc.pop("created_at", None)
        try:
            order_id = create_document("order", doc, database=self.db)
        except PyMongoError as e:
            return remote_error("creating order", e)
        return Ok(value=order_id)

    def get_order_by_id(self, order_id: str) -> Result:
        oid = to_object_id(order_id)
        if oid is None:
            return Err(ErrorKind.NOT_FOUND, "Order not found")
        try:
            doc = self.db["order"].find_one({"_id": oid})
        except PyMongoError as e:
            return remote_error("fetching order", e)
        if not doc:
            return Err(ErrorKind.NOT_FOUND, "Order not found")
        return parse_document(Order, doc, "order")

    def get_user_orders(self, user_id: str) -> Result:
        return self._list_orders({"user_id": user_id})

    def get_all_orders(self) -> Result:
        return self._list_orders({})

    def _list_orders(self, query: Dict[str, Any]) -> Result:
        try:
            docs = get_documents("order", query, sort=[("created_at", -1)], database=self.db)
        except PyMongoError as e:
            return remote_error("listing orders", e)
        return Ok(value=parse_documents(Order, docs, "order"))

    def update_order_status(self, order_id: str, status: OrderStatus, expected: Optional[OrderStatus] = None) -> Result:
        """Write a new status; with `expected`, only if the order is still in that status."""
        oid = to_object_id(order_id)
        if oid is None:
            return Err(ErrorKind.NOT_FOUND, "Order not found")
        query: Dict[str, Any] = {"_id": oid}
        if expected is not None:
            query["status"] = expected.value
        try:
            res = self.db["order"].update_one(
                query, {"$set": {"status": status.value, "updated_at": utcnow()}}
            )
        except PyMongoError as e:
            return remote_error("updating order status", e)
        if res.matched_count == 0:
            if expected is not None:
                return Err(ErrorKind.INVALID_TRANSITION, "Order status changed concurrently, reload and retry")
            return Err(ErrorKind.NOT_FOUND, "Order not found")
        return Ok()

    def get_order_stats(self) -> Result:
        """Order counts per status, and revenue from delivered orders."""
        try:
            groups = list(self.db["order"].aggregate([
                {"$group": {"_id": "$status", "count": {"$sum": 1}, "total": {"$sum": "$total"}}},
            ]))
        except PyMongoError as e:
            return remote_error("computing order stats", e)
        by_status = {s.value: 0 for s in OrderStatus}
        revenue = to_decimal(0)
        for group in groups:
            if group["_id"] in by_status:
                by_status[group["_id"]] = group["count"]
            if group["_id"] == OrderStatus.DELIVERED.value:
                revenue = to_decimal(group["total"])
        return Ok(value={
            "total_orders": sum(group["count"] for group in groups),
            "by_status": by_status,
            "revenue": float(round_money(revenue)),
        })

    # Cart snapshots

    def get_cart_snapshot(self, user_id: str) -> Result:
        try:
            doc = self.db["cart"].find_one({"user_id": user_id})
        except PyMongoError as e:
            return remote_error("loading cart snapshot", e)
        if not doc:
            return Ok(value=None)
        return Ok(value=doc.get("items", []))

    def put_cart_snapshot(self, user_id: str, items: List[CartEntry]) -> Result:
        payload = [i.model_dump() if isinstance(i, CartEntry) else dict(i) for i in items]
        try:
            self.db["cart"].update_one(
                {"user_id": user_id},
                {"$set": {"items": payload, "updated_at": utcnow()}},
                upsert=True,
            )
        except PyMongoError as e:
            return remote_error("syncing cart snapshot", e)
        return Ok()

    def delete_cart_snapshot(self, user_id: str) -> Result:
        try:
            self.db["cart"].delete_one({"user_id": user_id})
        except PyMongoError as e:
            return remote_error("deleting cart snapshot", e)
        return Ok()

    # Users

    def get_user(self, user_id: str) -> Result:
        oid = to_object_id(user_id)
        if oid is None:
            return Err(ErrorKind.NOT_FOUND, "User not found")
        try:
            doc = self.db["user"].find_one({"_id": oid})
        except PyMongoError as e:
            return remote_error("fetching user", e)
        if not doc:
            return Err(ErrorKind.NOT_FOUND, "User not found")
        return public_user(doc)

    def get_all_users(self) -> Result:
        try:
            docs = get_documents("user", sort=[("name", 1)], database=self.db)
        except PyMongoError as e:
            return remote_error("listing users", e)
        users = [public_user(doc) for doc in docs]
        return Ok(value=[u.value for u in users if u.success])

    def update_user(self, user_id: str, data: Dict[str, Any]) -> Result:
        """Update profile fields; email, admin flag and addresses are not writable here."""
        oid = to_object_id(user_id)
        if oid is None:
            return Err(ErrorKind.NOT_FOUND, "User not found")
        update = {k: v for k, v in data.items() if k in PROFILE_FIELDS}
        update["updated_at"] = utcnow()
        try:
            doc = self.db["user"].find_one_and_update(
                {"_id": oid}, {"$set": update}, return_document=ReturnDocument.AFTER
            )
        except PyMongoError as e:
            return remote_error("updating user", e)
        if not doc:
            return Err(ErrorKind.NOT_FOUND, "User not found")
        return public_user(doc)

    def add_address(self, user_id: str, address: Address) -> Result:
        oid = to_object_id(user_id)
        if oid is None:
            return Err(ErrorKind.NOT_FOUND, "User not found")
        try:
            res = self.db["user"].update_one(
                {"_id": oid},
                {"$addToSet": {"addresses": address.model_dump()}, "$set": {"updated_at": utcnow()}},
            )
        except PyMongoError as e:
            return remote_error("adding address", e)
        if res.matched_count == 0:
            return Err(ErrorKind.NOT_FOUND, "User not found")
        return Ok(value=address.id)

    def remove_address(self, user_id: str, address_id: str) -> Result:
        oid = to_object_id(user_id)
        if oid is None:
            return Err(ErrorKind.NOT_FOUND, "User not found")
        try:
            res = self.db["user"].update_one(
                {"_id": oid, "addresses.id": address_id},
                {"$pull": {"addresses": {"id": address_id}}, "$set": {"updated_at": utcnow()}},
            )
        except PyMongoError as e:
            return remote_error("removing address", e)
        if res.matched_count == 0:
            return Err(ErrorKind.NOT_FOUND, "Address not found")
        return Ok()
