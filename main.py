import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import Depends, FastAPI, File, HTTPException, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database

from config import CORS_ORIGINS, MAX_UPLOAD_FILES, PORT, UPLOAD_DIR, setup_logging
from database import db, ensure_indexes, get_db
from errors import register_exception_handlers
from schemas import (
    CartItem as CartItemSchema,
    Category as CategorySchema,
    Document,
    OrderStatus,
    PaymentMethod,
    Product as ProductSchema,
    ProductCategory,
    Role,
    User as UserSchema,
)
from security import Session, clear_session, get_session, hash_password, save_session, verify_password
from seed import seed_defaults
from storage import Storage, public_user
from uploads import check_mime_type, ensure_upload_dir, remove_file, save_upload

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        ensure_indexes(db)
        seed_defaults(db)
    except Exception:
        logger.exception("Database setup failed, continuing without seed data")
    yield


app = FastAPI(title="Fabric Haven API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

ensure_upload_dir()
app.mount("/uploads", StaticFiles(directory=UPLOAD_DIR, check_dir=False), name="uploads")


# Dependencies

def get_storage(database: Database = Depends(get_db)) -> Storage:
    return Storage(database)


def parse_object_id(value: str, label: str) -> ObjectId:
    if not ObjectId.is_valid(value):
        raise HTTPException(status_code=400, detail=f"Invalid {label} id")
    return ObjectId(value)


def session_user(session: Session, storage: Storage) -> Optional[Dict[str, Any]]:
    """The session's user, or None when logged out or signed out since."""
    if not session.is_authenticated or not ObjectId.is_valid(session.user_id):
        return None
    user = storage.get_user(ObjectId(session.user_id))
    if not user or user.get("session_revision", 0) != session.revision:
        return None
    return user


def get_current_user(session: Session = Depends(get_session), storage: Storage = Depends(get_storage)) -> Dict[str, Any]:
    if not session.is_authenticated:
        raise HTTPException(status_code=401, detail="Not authenticated")
    user = session_user(session, storage)
    if not user:
        raise HTTPException(status_code=401, detail="Session expired, please log in again")
    return public_user(user)


def require_admin(current_user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if current_user.get("role") != Role.admin.value:
        raise HTTPException(status_code=403, detail="Access forbidden. Admin privileges required.")
    return current_user


def login_session(response: Response, session: Session, user: Dict[str, Any]) -> str:
    """Attach the user to the browser session, keeping its cart."""
    session.user_id = user["id"]
    session.username = user["username"]
    session.is_admin = user.get("role") == Role.admin.value
    session.revision = user.get("session_revision", 0)
    return save_session(response, session)


# Routes
@app.get("/")
def read_root():
    return {"message": "Fabric Haven API"}


@app.get("/test")
def test_database(database: Database = Depends(get_db)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if database is not None:
            response["database_name"] = database.name
            response["collections"] = database.list_collection_names()
            response["database"] = "✅ Available"
            response["connection_status"] = "Connected"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# Auth models
class RegisterInput(BaseModel):
    username: str = Field(..., min_length=3)
    email: EmailStr
    password: str = Field(..., min_length=6)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None


class LoginInput(BaseModel):
    username: str = Field(..., min_length=1, description="Username or email")
    password: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: Dict[str, Any]


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None


class ChangePasswordInput(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6)
    confirm_password: str = Field(..., min_length=1)


def find_login_user(storage: Storage, payload: LoginInput) -> Dict[str, Any]:
    user = storage.get_user_by_username(payload.username) or storage.get_user_by_email(payload.username)
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Invalid username or password")
    return user


# Users
@app.post("/api/users/register", response_model=TokenResponse, status_code=201)
def register(payload: RegisterInput, response: Response, session: Session = Depends(get_session),
             storage: Storage = Depends(get_storage)):
    user_model = UserSchema(
        username=payload.username,
        email=payload.email.lower(),
        password_hash=hash_password(payload.password),
        role=Role.customer,
        first_name=payload.first_name,
        last_name=payload.last_name,
        phone=payload.phone,
    )
    user = storage.create_user(user_model)
    token = login_session(response, session, user)
    logger.info("Registered user %s", user["username"])
    return TokenResponse(access_token=token, user=public_user(user))


@app.post("/api/users/login", response_model=TokenResponse)
def login(payload: LoginInput, response: Response, session: Session = Depends(get_session),
          storage: Storage = Depends(get_storage)):
    user = find_login_user(storage, payload)
    token = login_session(response, session, user)
    return TokenResponse(access_token=token, user=public_user(user))


@app.get("/api/users/me")
def me(current_user: dict = Depends(get_current_user)):
    return current_user


@app.put("/api/users/me")
def update_me(data: ProfileUpdate, current_user: dict = Depends(get_current_user),
              storage: Storage = Depends(get_storage)):
    update_dict = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
    user = storage.update_user(ObjectId(current_user["id"]), update_dict)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return public_user(user)


@app.post("/api/users/change-password")
def change_password(data: ChangePasswordInput, current_user: dict = Depends(get_current_user),
                    storage: Storage = Depends(get_storage)):
    if data.new_password != data.confirm_password:
        raise HTTPException(status_code=400, detail="New passwords do not match")
    user = storage.get_user(ObjectId(current_user["id"]))
    if not user or not verify_password(data.current_password, user.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Current password is incorrect")
    storage.update_user(ObjectId(user["id"]), {"password_hash": hash_password(data.new_password)})
    return {"message": "Password updated successfully"}


# Admin auth
@app.post("/api/auth/login")
def admin_login(payload: LoginInput, response: Response, session: Session = Depends(get_session),
                storage: Storage = Depends(get_storage)):
    user = find_login_user(storage, payload)
    if user.get("role") != Role.admin.value:
        raise HTTPException(status_code=403, detail="Access forbidden. Admin privileges required.")
    token = login_session(response, session, user)
    return {"message": "Login successful", "username": user["username"], "is_admin": True, "access_token": token}


@app.post("/api/auth/logout")
def logout(response: Response, session: Session = Depends(get_session), storage: Storage = Depends(get_storage)):
    """Drop the cookie and revoke every token issued to the user, bearer tokens included."""
    user = session_user(session, storage)
    if user:
        storage.revoke_sessions(ObjectId(user["id"]))
    clear_session(response)
    return {"message": "Logout successful"}


@app.get("/api/auth/status")
def auth_status(session: Session = Depends(get_session), storage: Storage = Depends(get_storage)):
    user = session_user(session, storage)
    if not user:
        return {"is_authenticated": False, "username": None, "is_admin": False}
    return {"is_authenticated": True, "username": user["username"], "is_admin": user.get("role") == Role.admin.value}


# Products
class ProductIn(Document):
    name: str = Field(..., min_length=1)
    description: str
    price: int = Field(..., ge=0)
    image_url: str
    category: ProductCategory
    stock: int = Field(0, ge=0)
    is_featured: bool = False
    is_active: bool = True
    sku: str = Field(..., min_length=1)
    media_files: List[str] = []


class ProductUpdate(Document):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[int] = Field(None, ge=0)
    image_url: Optional[str] = None
    category: Optional[ProductCategory] = None
    stock: Optional[int] = Field(None, ge=0)
    is_featured: Optional[bool] = None
    is_active: Optional[bool] = None
    sku: Optional[str] = Field(None, min_length=1)
    media_files: Optional[List[str]] = None


@app.get("/api/products")
def list_products(category: Optional[str] = None, q: Optional[str] = None, featured: Optional[bool] = None,
                  active: Optional[bool] = None, storage: Storage = Depends(get_storage)):
    return storage.list_products(category=category, q=q, featured=featured, active=active)


@app.get("/api/products/category/{category}")
def products_by_category(category: str, storage: Storage = Depends(get_storage)):
    return storage.products_by_category(category)


@app.get("/api/products/search/{query}")
def search_products(query: str, storage: Storage = Depends(get_storage)):
    return storage.search_products(query)


@app.get("/api/products/{product_id}")
def get_product(product_id: str, storage: Storage = Depends(get_storage)):
    product = storage.get_product(parse_object_id(product_id, "product"))
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@app.get("/api/products/{product_id}/details")
def get_product_details(product_id: str, storage: Storage = Depends(get_storage)):
    product = storage.get_product_with_files(parse_object_id(product_id, "product"))
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@app.post("/api/products", status_code=201)
def create_product(data: ProductIn, admin: dict = Depends(require_admin), storage: Storage = Depends(get_storage)):
    product = ProductSchema(**data.model_dump())
    return storage.create_product(product)


@app.put("/api/products/{product_id}")
def update_product(product_id: str, data: ProductUpdate, admin: dict = Depends(require_admin),
                   storage: Storage = Depends(get_storage)):
    obj_id = parse_object_id(product_id, "product")
    update_dict = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
    if not update_dict:
        raise HTTPException(status_code=400, detail="No fields to update")
    product = storage.update_product(obj_id, update_dict)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, admin: dict = Depends(require_admin), storage: Storage = Depends(get_storage)):
    files = storage.delete_product(parse_object_id(product_id, "product"))
    if files is None:
        raise HTTPException(status_code=404, detail="Product not found")
    for f in files:
        remove_file(f.get("path"))
    return {"message": "Product deleted successfully"}


# Categories
class CategoryIn(Document):
    name: ProductCategory
    description: Optional[str] = None


class CategoryUpdate(Document):
    name: Optional[ProductCategory] = None
    description: Optional[str] = None


@app.get("/api/categories")
def list_categories(storage: Storage = Depends(get_storage)):
    return storage.list_categories()


@app.get("/api/categories/{category_id}")
def get_category(category_id: str, storage: Storage = Depends(get_storage)):
    category = storage.get_category(parse_object_id(category_id, "category"))
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return category


@app.post("/api/categories", status_code=201)
def create_category(data: CategoryIn, admin: dict = Depends(require_admin), storage: Storage = Depends(get_storage)):
    return storage.create_category(CategorySchema(**data.model_dump()))


@app.put("/api/categories/{category_id}")
def update_category(category_id: str, data: CategoryUpdate, admin: dict = Depends(require_admin),
                    storage: Storage = Depends(get_storage)):
    obj_id = parse_object_id(category_id, "category")
    update_dict = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
    category = storage.update_category(obj_id, update_dict)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return category


@app.delete("/api/categories/{category_id}")
def delete_category(category_id: str, admin: dict = Depends(require_admin), storage: Storage = Depends(get_storage)):
    if not storage.delete_category(parse_object_id(category_id, "category")):
        raise HTTPException(status_code=404, detail="Category not found")
    return {"message": "Category deleted successfully"}


# Cart
class AddToCartInput(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class UpdateCartItemInput(BaseModel):
    quantity: int


@app.get("/api/cart")
def get_cart(session: Session = Depends(get_session), storage: Storage = Depends(get_storage)):
    items = storage.get_cart_items(session.cart_id)
    return {
        "items": items,
        "total": sum(it["subtotal"] for it in items),
        "item_count": sum(it["quantity"] for it in items),
    }


@app.post("/api/cart", status_code=201)
def add_to_cart(item: AddToCartInput, session: Session = Depends(get_session),
                storage: Storage = Depends(get_storage)):
    cart_item = CartItemSchema(cart_id=session.cart_id, product_id=item.product_id, quantity=item.quantity)
    return storage.add_to_cart(cart_item)


@app.put("/api/cart/{item_id}")
def update_cart_item(item_id: str, data: UpdateCartItemInput, session: Session = Depends(get_session),
                     storage: Storage = Depends(get_storage)):
    item = storage.update_cart_item(session.cart_id, parse_object_id(item_id, "cart item"), data.quantity)
    return item or {"message": "Item removed from cart"}


@app.delete("/api/cart/{item_id}")
def remove_from_cart(item_id: str, session: Session = Depends(get_session), storage: Storage = Depends(get_storage)):
    if not storage.remove_from_cart(session.cart_id, parse_object_id(item_id, "cart item")):
        raise HTTPException(status_code=404, detail="Cart item not found")
    return {"message": "Item removed from cart"}


@app.delete("/api/cart")
def clear_cart(session: Session = Depends(get_session), storage: Storage = Depends(get_storage)):
    storage.clear_cart(session.cart_id)
    return {"message": "Cart cleared successfully"}


# Orders
class CheckoutInput(Document):
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)
    country: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.cash


class OrderStatusInput(Document):
    status: OrderStatus
    tracking_number: Optional[str] = None


@app.post("/api/orders", status_code=201)
def create_order(data: CheckoutInput, session: Session = Depends(get_session),
                 current_user: dict = Depends(get_current_user), storage: Storage = Depends(get_storage)):
    shipping = {
        "payment_method": data.payment_method,
        "shipping_address": data.address,
        "shipping_city": data.city,
        "shipping_state": data.state,
        "shipping_zip_code": data.zip_code,
        "shipping_country": data.country or "India",
    }
    order = storage.place_order(session.cart_id, current_user["id"], shipping)
    return {"order": order, "message": "Order placed successfully"}


@app.get("/api/orders")
def list_orders(current_user: dict = Depends(get_current_user), storage: Storage = Depends(get_storage)):
    return storage.list_orders(current_user["id"])


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, current_user: dict = Depends(get_current_user), storage: Storage = Depends(get_storage)):
    order = storage.get_order(parse_object_id(order_id, "order"))
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    if order["user_id"] != current_user["id"] and not current_user["is_admin"]:
        raise HTTPException(status_code=403, detail="You are not authorized to view this order")
    return order


@app.get("/api/admin/orders")
def list_all_orders(admin: dict = Depends(require_admin), storage: Storage = Depends(get_storage)):
    return storage.list_orders()


@app.put("/api/admin/orders/{order_id}/status")
def update_order_status(order_id: str, data: OrderStatusInput, admin: dict = Depends(require_admin),
                        storage: Storage = Depends(get_storage)):
    order = storage.update_order_status(parse_object_id(order_id, "order"), data.status, data.tracking_number)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


# Uploads
def get_upload_product(product_id: str, storage: Storage) -> ObjectId:
    obj_id = parse_object_id(product_id, "product")
    if not storage.get_product(obj_id):
        raise HTTPException(status_code=404, detail="Product not found")
    return obj_id


@app.post("/api/upload/product/{product_id}", status_code=201)
def upload_product_file(product_id: str, file: UploadFile = File(...), admin: dict = Depends(require_admin),
                        storage: Storage = Depends(get_storage)):
    obj_id = get_upload_product(product_id, storage)
    record = save_upload(file, str(obj_id), field_name="file")
    return storage.add_file(record)


@app.post("/api/upload/product/{product_id}/multiple", status_code=201)
def upload_product_files(product_id: str, files: List[UploadFile] = File(...), admin: dict = Depends(require_admin),
                         storage: Storage = Depends(get_storage)):
    obj_id = get_upload_product(product_id, storage)
    if len(files) > MAX_UPLOAD_FILES:
        raise HTTPException(status_code=400, detail=f"At most {MAX_UPLOAD_FILES} files per upload")
    for f in files:
        check_mime_type(f)
    # every file is on disk before any row is written; a failure removes the saved ones
    saved = []
    try:
        for f in files:
            saved.append(save_upload(f, str(obj_id), field_name="files"))
    except HTTPException:
        for record in saved:
            remove_file(record.path)
        logger.warning("Upload batch for product %s rejected, removed %d saved file(s)", obj_id, len(saved))
        raise
    return [storage.add_file(record) for record in saved]


@app.get("/api/files/product/{product_id}")
def list_product_files(product_id: str, storage: Storage = Depends(get_storage)):
    return storage.files_for_product(parse_object_id(product_id, "product"))


@app.delete("/api/files/{file_id}")
def delete_file(file_id: str, admin: dict = Depends(require_admin), storage: Storage = Depends(get_storage)):
    record = storage.delete_file(parse_object_id(file_id, "file"))
    if not record:
        raise HTTPException(status_code=404, detail="File not found")
    remove_file(record.get("path"))
    return {"message": "File deleted successfully"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
