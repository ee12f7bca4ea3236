import logging
import os
from typing import List, Optional, Dict, Any

from fastapi import FastAPI, Depends, Header, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from pymongo.errors import PyMongoError

from accounts import add_address, remove_address, update_profile
from database import DATABASE_NAME, db, client
from data_service import MongoDataService
from cart import CartStore
from orders import OrderPlacement, transition_order_status
from results import ErrorKind, Err, Result
from reviews import approve_review, delete_review, submit_review, update_review_content
from schemas import Address, CartEntry, CustomerInfo, OrderStatus, PRODUCT_CATEGORIES

logger = logging.getLogger(__name__)

DAIRYDROP_COLLECTIONS = ["product", "review", "order", "cart", "user"]


# FastAPI app
app = FastAPI(title="DairyDrop API", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ERROR_STATUS = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.STOCK_LIMIT: status.HTTP_409_CONFLICT,
    ErrorKind.IN_FLIGHT: status.HTTP_409_CONFLICT,
    ErrorKind.INVALID_TRANSITION: status.HTTP_409_CONFLICT,
    ErrorKind.REMOTE: status.HTTP_502_BAD_GATEWAY,
}

# Pydantic models
class ProductCreate(BaseModel):
    name: str
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    quantity: int = Field(0, ge=0)
    category: str = "Other"
    image_url: Optional[str] = None

class ProductUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    quantity: Optional[int] = Field(None, ge=0)
    category: Optional[str] = None
    image_url: Optional[str] = None

class ReviewCreate(BaseModel):
    rating: int
    comment: str = ""

class ReviewContentUpdate(BaseModel):
    comment: str

class CartUpdate(BaseModel):
    items: List[CartEntry]

class CheckoutLine(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)

class CheckoutRequest(BaseModel):
    items: List[CheckoutLine]
    customer_info: CustomerInfo

class OrderStatusUpdate(BaseModel):
    status: OrderStatus

class ProfileUpdate(BaseModel):
    name: str
    phone: str

# Dependencies
def get_data_service() -> MongoDataService:
    if db is None:
        raise HTTPException(status_code=500, detail="Database not available")
    return MongoDataService(db, client)


def get_current_user(
    x_user_id: Optional[str] = Header(None),
    data: MongoDataService = Depends(get_data_service),
) -> dict:
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    found = data.get_user(x_user_id)
    if not found.success:
        raise HTTPException(status_code=401, detail="User not found")
    return found.value


def require_admin(user: dict):
    if not user.get("is_admin"):
        raise HTTPException(status_code=403, detail="Admin only")


def unwrap(result: Result):
    if isinstance(result, Err):
        detail: Any = result.message
        if result.errors:
            detail = {"message": result.message, "errors": result.errors}
        raise HTTPException(status_code=ERROR_STATUS.get(result.kind, 400), detail=detail)
    return result.value

# Products
@app.get("/api/categories")
def get_categories():
    return {"categories": PRODUCT_CATEGORIES}

@app.get("/api/products")
def list_products(category: Optional[str] = None, data: MongoDataService = Depends(get_data_service)):
    return {"products": unwrap(data.get_products(category))}

@app.get("/api/products/{product_id}")
def get_product(product_id: str, data: MongoDataService = Depends(get_data_service)):
    return unwrap(data.get_product_by_id(product_id))

@app.post("/api/products")
def create_product(body: ProductCreate, current_user: dict = Depends(get_current_user),
                   data: MongoDataService = Depends(get_data_service)):
    require_admin(current_user)
    if body.category not in PRODUCT_CATEGORIES:
        raise HTTPException(status_code=400, detail="Unknown category")
    return {"id": unwrap(data.create_product(body.model_dump()))}

@app.put("/api/products/{product_id}")
def update_product(product_id: str, body: ProductUpdate, current_user: dict = Depends(get_current_user),
                   data: MongoDataService = Depends(get_data_service)):
    require_admin(current_user)
    update = body.model_dump(exclude_none=True)
    if "category" in update and update["category"] not in PRODUCT_CATEGORIES:
        raise HTTPException(status_code=400, detail="Unknown category")
    return unwrap(data.update_product(product_id, update))

@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, current_user: dict = Depends(get_current_user),
                   data: MongoDataService = Depends(get_data_service)):
    require_admin(current_user)
    unwrap(data.delete_product(product_id))
    return {"success": True}

# Reviews
@app.get("/api/products/{product_id}/reviews")
def list_product_reviews(product_id: str, data: MongoDataService = Depends(get_data_service)):
    return {"reviews": unwrap(data.get_product_reviews(product_id, approved_only=True))}

@app.post("/api/products/{product_id}/reviews")
def add_review(product_id: str, body: ReviewCreate, current_user: dict = Depends(get_current_user),
               data: MongoDataService = Depends(get_data_service)):
    review_id = unwrap(submit_review(
        data,
        product_id,
        current_user["id"],
        current_user.get("name") or current_user.get("email", ""),
        body.rating,
        body.comment,
    ))
    return {"id": review_id, "approved": False}

@app.get("/api/admin/reviews")
def admin_reviews(current_user: dict = Depends(get_current_user), data: MongoDataService = Depends(get_data_service)):
    require_admin(current_user)
    return {"reviews": unwrap(data.get_all_reviews())}

@app.post("/api/admin/reviews/{review_id}/approve")
def admin_approve_review(review_id: str, current_user: dict = Depends(get_current_user),
                         data: MongoDataService = Depends(get_data_service)):
    require_admin(current_user)
    result = approve_review(data, review_id)
    unwrap(result)
    return {"success": True, "message": result.message, "rating": result.value}

@app.patch("/api/admin/reviews/{review_id}")
def admin_edit_review(review_id: str, body: ReviewContentUpdate, current_user: dict = Depends(get_current_user),
                      data: MongoDataService = Depends(get_data_service)):
    require_admin(current_user)
    unwrap(update_review_content(data, review_id, body.comment))
    return {"success": True}

@app.delete("/api/admin/reviews/{review_id}")
def admin_delete_review(review_id: str, current_user: dict = Depends(get_current_user),
                        data: MongoDataService = Depends(get_data_service)):
    require_admin(current_user)
    unwrap(delete_review(data, review_id))
    return {"success": True}

# Cart
@app.get("/api/cart")
def get_cart(current_user: dict = Depends(get_current_user), data: MongoDataService = Depends(get_data_service)):
    items = unwrap(data.get_cart_snapshot(current_user["id"]))
    return {"items": items or []}

@app.put("/api/cart")
def set_cart(payload: CartUpdate, current_user: dict = Depends(get_current_user),
             data: MongoDataService = Depends(get_data_service)):
    if payload.items:
        unwrap(data.put_cart_snapshot(current_user["id"], payload.items))
    else:
        unwrap(data.delete_cart_snapshot(current_user["id"]))
    return {"success": True}

@app.delete("/api/cart")
def delete_cart(current_user: dict = Depends(get_current_user), data: MongoDataService = Depends(get_data_service)):
    unwrap(data.delete_cart_snapshot(current_user["id"]))
    return {"success": True}

# Checkout
@app.post("/api/checkout")
def checkout(payload: CheckoutRequest, current_user: dict = Depends(get_current_user),
             data: MongoDataService = Depends(get_data_service)):
    if not payload.items:
        raise HTTPException(status_code=400, detail={"message": "Your cart is empty", "errors": {"cart": "Your cart is empty"}})
    # rebuilt against live stock; nothing is kept on disk
    cart = CartStore()
    for line in payload.items:
        product = unwrap(data.get_product_by_id(line.product_id))
        added = cart.add_to_cart(product, line.quantity)
        if not added.success or added.details.get("available_to_add") != line.quantity:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Only {product.quantity} of {product.name} available",
            )
    result = OrderPlacement(cart, data).place_order(current_user["id"], payload.customer_info)
    order_id = unwrap(result)
    # the order stands even if the saved cart cannot be removed
    cleared = data.delete_cart_snapshot(current_user["id"])
    if not cleared.success:
        logger.error("Order %s placed but saved cart for %s was not removed: %s",
                     order_id, current_user["id"], cleared.message)
    return {"id": order_id, **{k: float(v) for k, v in result.details.items()}}

# Users
@app.get("/api/users/me")
def get_me(current_user: dict = Depends(get_current_user)):
    return current_user

@app.put("/api/users/me")
def update_me(body: ProfileUpdate, current_user: dict = Depends(get_current_user),
              data: MongoDataService = Depends(get_data_service)):
    return unwrap(update_profile(data, current_user["id"], body.name, body.phone))

@app.post("/api/users/me/addresses")
def add_my_address(body: Address, current_user: dict = Depends(get_current_user),
                   data: MongoDataService = Depends(get_data_service)):
    return {"id": unwrap(add_address(data, current_user["id"], body))}

@app.delete("/api/users/me/addresses/{address_id}")
def remove_my_address(address_id: str, current_user: dict = Depends(get_current_user),
                      data: MongoDataService = Depends(get_data_service)):
    unwrap(remove_address(data, current_user["id"], address_id))
    return {"success": True}

@app.get("/api/admin/users")
def admin_users(current_user: dict = Depends(get_current_user), data: MongoDataService = Depends(get_data_service)):
    require_admin(current_user)
    return {"users": unwrap(data.get_all_users())}

# Orders
@app.get("/api/orders")
def my_orders(current_user: dict = Depends(get_current_user), data: MongoDataService = Depends(get_data_service)):
    return {"orders": unwrap(data.get_user_orders(current_user["id"]))}

@app.get("/api/orders/{order_id}")
def order_detail(order_id: str, current_user: dict = Depends(get_current_user),
                 data: MongoDataService = Depends(get_data_service)):
    result = data.get_order_by_id(order_id)
    if not result.success or (result.value.user_id != current_user["id"] and not current_user.get("is_admin")):
        raise HTTPException(status_code=404, detail="Order not found")
    return result.value

@app.get("/api/admin/orders")
def admin_orders(current_user: dict = Depends(get_current_user), data: MongoDataService = Depends(get_data_service)):
    require_admin(current_user)
    return {"orders": unwrap(data.get_all_orders())}

@app.get("/api/admin/orders/stats")
def admin_order_stats(current_user: dict = Depends(get_current_user), data: MongoDataService = Depends(get_data_service)):
    require_admin(current_user)
    return unwrap(data.get_order_stats())

@app.patch("/api/admin/orders/{order_id}/status")
def admin_update_order_status(order_id: str, body: OrderStatusUpdate, current_user: dict = Depends(get_current_user),
                              data: MongoDataService = Depends(get_data_service)):
    require_admin(current_user)
    unwrap(transition_order_status(data, order_id, body.status))
    return {"success": True, "status": body.status.value}

# Health + test
@app.get("/")
def root():
    return {"message": "DairyDrop API running"}

@app.get("/test")
def test_database():
    response: Dict[str, Any] = {
        "backend": "running",
        "database_url_set": bool(os.getenv("DATABASE_URL")),
        "database_name": DATABASE_NAME,
        "collections": {},
    }
    if db is not None:
        try:
            existing = set(db.list_collection_names())
        except PyMongoError as e:
            response["error"] = str(e)[:120]
        else:
            response["collections"] = {name: name in existing for name in DAIRYDROP_COLLECTIONS}
    return response

@app.get('/seed/init')
def seed(data: MongoDataService = Depends(get_data_service)):
    sample_products = [
        { 'name': 'Whole Milk 1L', 'description': 'Fresh pasteurised whole milk', 'price': 1.99, 'category': 'Milk', 'quantity': 120 },
        { 'name': 'Greek Yogurt', 'description': 'Thick strained yogurt, 500g', 'price': 3.49, 'category': 'Yogurt', 'quantity': 60 },
        { 'name': 'Salted Butter', 'description': 'Churned from cultured cream, 250g', 'price': 4.25, 'category': 'Butter', 'quantity': 40 },
        { 'name': 'Aged Cheddar', 'description': '12 month cheddar, 200g', 'price': 6.90, 'category': 'Cheese', 'quantity': 25 },
        { 'name': 'Pure Ghee', 'description': 'Clarified butter, 500ml jar', 'price': 8.50, 'category': 'Ghee', 'quantity': 30 },
    ]
    created = 0
    for p in sample_products:
        if not data.db['product'].find_one({ 'name': p['name'] }):
            unwrap(data.create_product(p))
            created += 1
    return { 'ok': True, 'created': created }

if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
