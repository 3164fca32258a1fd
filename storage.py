"""
Data access for the fabric store.

``Storage`` wraps a pymongo ``Database`` with one method per query. Methods
take ObjectIds for document ids and return JSON ready dicts (see
``serialize_doc``). Domain failures raise the exceptions in ``errors``.
"""

import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

from bson import ObjectId
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from errors import ConflictError, EmptyCartError, InsufficientStockError, NotFoundError, StoreError
from schemas import (
    CartItem,
    Category,
    Order,
    OrderItem,
    OrderStatus,
    Product,
    UploadedFile,
    User,
    utcnow,
)

logger = logging.getLogger(__name__)


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.get("_id")
    if isinstance(_id, ObjectId):
        doc["id"] = str(_id)
        del doc["_id"]
    # Convert ObjectId in nested fields if any
    for k, v in list(doc.items()):
        if isinstance(v, ObjectId):
            doc[k] = str(v)
    return doc


def public_user(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    user = serialize_doc(doc)
    if user:
        # Never send password hash
        user.pop("password_hash", None)
        user.pop("session_revision", None)
        user["is_admin"] = user.get("role") == "admin"
    return user


def _contains(q: str) -> Dict[str, Any]:
    return {"$regex": re.escape(q), "$options": "i"}


class Storage:
    def __init__(self, db: Database):
        self.db = db

    # Products

    def list_products(self, category: Optional[str] = None, q: Optional[str] = None,
                      featured: Optional[bool] = None, active: Optional[bool] = None) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {}
        if category:
            query["category"] = category
        if q:
            query["$or"] = [{"name": _contains(q)}, {"description": _contains(q)}]
        if featured is not None:
            query["is_featured"] = featured
        if active is not None:
            query["is_active"] = active
        return [serialize_doc(d) for d in self.db["product"].find(query).sort("_id", 1)]

    def get_product(self, product_id: ObjectId) -> Optional[Dict[str, Any]]:
        return serialize_doc(self.db["product"].find_one({"_id": product_id}))

    def products_by_category(self, category: str) -> List[Dict[str, Any]]:
        return self.list_products(category=category)

    def search_products(self, q: str) -> List[Dict[str, Any]]:
        return self.list_products(q=q)

    def get_product_with_files(self, product_id: ObjectId) -> Optional[Dict[str, Any]]:
        product = self.get_product(product_id)
        if product:
            product["files"] = self.files_for_product(product_id)
        return product

    def create_product(self, product: Product) -> Dict[str, Any]:
        res = self.db["product"].insert_one(product.model_dump())
        logger.info("Created product %s (%s)", res.inserted_id, product.sku)
        return self.get_product(res.inserted_id)

    def update_product(self, product_id: ObjectId, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        fields = dict(fields, updated_at=utcnow())
        doc = self.db["product"].find_one_and_update(
            {"_id": product_id}, {"$set": fields}, return_document=ReturnDocument.AFTER
        )
        return serialize_doc(doc)

    def delete_product(self, product_id: ObjectId) -> Optional[List[Dict[str, Any]]]:
        """Delete a product with its cart rows and file rows.

        Returns the deleted file rows so the caller can remove them from disk,
        or None when the product does not exist.
        """
        res = self.db["product"].delete_one({"_id": product_id})
        if res.deleted_count == 0:
            return None
        pid = str(product_id)
        self.db["cart_item"].delete_many({"product_id": pid})
        files = [serialize_doc(f) for f in self.db["uploaded_file"].find({"product_id": pid})]
        self.db["uploaded_file"].delete_many({"product_id": pid})
        logger.info("Deleted product %s and %d file(s)", pid, len(files))
        return files

    # Categories

    def _product_count(self, name: str) -> int:
        return self.db["product"].count_documents({"category": name, "is_active": True})

    def _with_count(self, doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        category = serialize_doc(doc)
        if category:
            category["product_count"] = self._product_count(category["name"])
        return category

    def list_categories(self) -> List[Dict[str, Any]]:
        return [self._with_count(d) for d in self.db["category"].find().sort("_id", 1)]

    def get_category(self, category_id: ObjectId) -> Optional[Dict[str, Any]]:
        return self._with_count(self.db["category"].find_one({"_id": category_id}))

    def get_category_by_name(self, name: str) -> Optional[Dict[str, Any]]:
        return self._with_count(self.db["category"].find_one({"name": name}))

    def create_category(self, category: Category) -> Dict[str, Any]:
        if self.db["category"].find_one({"name": category.name}):
            raise ConflictError("Category already exists")
        try:
            res = self.db["category"].insert_one(category.model_dump())
        except DuplicateKeyError:
            raise ConflictError("Category already exists")
        return self.get_category(res.inserted_id)

    def update_category(self, category_id: ObjectId, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        existing = self.db["category"].find_one({"_id": category_id})
        if not existing:
            return None
        new_name = fields.get("name")
        if new_name is not None and new_name != existing["name"]:
            if self.db["category"].find_one({"name": new_name}):
                raise ConflictError("Category already exists")
            if self.db["product"].count_documents({"category": existing["name"]}):
                raise ConflictError("Cannot rename a category that still has products")
        if fields:
            try:
                self.db["category"].update_one({"_id": category_id}, {"$set": fields})
            except DuplicateKeyError:
                raise ConflictError("Category already exists")
        return self.get_category(category_id)

    def delete_category(self, category_id: ObjectId) -> bool:
        existing = self.db["category"].find_one({"_id": category_id})
        if not existing:
            return False
        # inactive products still reference the category
        if self.db["product"].count_documents({"category": existing["name"]}):
            raise ConflictError("Cannot delete a category that still has products")
        self.db["category"].delete_one({"_id": category_id})
        return True

    # Cart

    def get_cart_items(self, cart_id: str) -> List[Dict[str, Any]]:
        items = []
        for row in self.db["cart_item"].find({"cart_id": cart_id}).sort("_id", 1):
            item = serialize_doc(row)
            product = self.get_product(ObjectId(row["product_id"])) if ObjectId.is_valid(row["product_id"]) else None
            item["product"] = product
            item["subtotal"] = product["price"] * item["quantity"] if product else 0
            items.append(item)
        return items

    def get_cart_item(self, cart_id: str, item_id: ObjectId) -> Optional[Dict[str, Any]]:
        return serialize_doc(self.db["cart_item"].find_one({"_id": item_id, "cart_id": cart_id}))

    def add_to_cart(self, item: CartItem) -> Dict[str, Any]:
        if not ObjectId.is_valid(item.product_id):
            raise NotFoundError("Product not found")
        product = self.db["product"].find_one({"_id": ObjectId(item.product_id)})
        if not product:
            raise NotFoundError("Product not found")
        if not product.get("is_active", True):
            raise StoreError("Product is not available")
        # merge with an existing row for the same product
        query = {"cart_id": item.cart_id, "product_id": item.product_id}
        update = {"$inc": {"quantity": item.quantity}}
        try:
            doc = self.db["cart_item"].find_one_and_update(
                query, update, upsert=True, return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError:
            # lost an upsert race, the row exists now
            doc = self.db["cart_item"].find_one_and_update(query, update, return_document=ReturnDocument.AFTER)
        return serialize_doc(doc)

    def update_cart_item(self, cart_id: str, item_id: ObjectId, quantity: int) -> Optional[Dict[str, Any]]:
        """Set a row's quantity; zero or below removes the row and returns None."""
        if quantity <= 0:
            if not self.remove_from_cart(cart_id, item_id):
                raise NotFoundError("Cart item not found")
            return None
        doc = self.db["cart_item"].find_one_and_update(
            {"_id": item_id, "cart_id": cart_id},
            {"$set": {"quantity": quantity}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise NotFoundError("Cart item not found")
        return serialize_doc(doc)

    def remove_from_cart(self, cart_id: str, item_id: ObjectId) -> bool:
        return self.db["cart_item"].delete_one({"_id": item_id, "cart_id": cart_id}).deleted_count > 0

    def clear_cart(self, cart_id: str) -> int:
        return self.db["cart_item"].delete_many({"cart_id": cart_id}).deleted_count

    # Users

    def get_user(self, user_id: ObjectId) -> Optional[Dict[str, Any]]:
        return serialize_doc(self.db["user"].find_one({"_id": user_id}))

    def get_user_by_username(self, username: str) -> Optional[Dict[str, Any]]:
        return serialize_doc(self.db["user"].find_one({"username": username}))

    def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return serialize_doc(self.db["user"].find_one({"email": email.lower()}))

    def create_user(self, user: User) -> Dict[str, Any]:
        data = user.model_dump()
        data["email"] = data["email"].lower()
        if self.get_user_by_username(user.username):
            raise ConflictError("Username already exists")
        if self.get_user_by_email(data["email"]):
            raise ConflictError("Email already exists")
        try:
            res = self.db["user"].insert_one(data)
        except DuplicateKeyError:
            raise ConflictError("Username or email already exists")
        return self.get_user(res.inserted_id)

    def update_user(self, user_id: ObjectId, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if "email" in fields:
            fields = dict(fields, email=fields["email"].lower())
            other = self.db["user"].find_one({"email": fields["email"], "_id": {"$ne": user_id}})
            if other:
                raise ConflictError("Email already exists")
        if not fields:
            return self.get_user(user_id)
        doc = self.db["user"].find_one_and_update(
            {"_id": user_id}, {"$set": fields}, return_document=ReturnDocument.AFTER
        )
        return serialize_doc(doc)

    def revoke_sessions(self, user_id: ObjectId) -> None:
        self.db["user"].update_one({"_id": user_id}, {"$inc": {"session_revision": 1}})
        logger.info("Revoked sessions of user %s", user_id)

    # Orders

    def _release_stock(self, reserved: Iterable[Tuple[ObjectId, int]]) -> None:
        for product_id, quantity in reserved:
            self.db["product"].update_one({"_id": product_id}, {"$inc": {"stock": quantity}})

    def _reserve_line(self, row: Dict[str, Any]) -> Dict[str, Any]:
        product_id = ObjectId(row["product_id"]) if ObjectId.is_valid(row["product_id"]) else None
        quantity = int(row["quantity"])
        product = None
        if product_id is not None:
            product = self.db["product"].find_one_and_update(
                {"_id": product_id, "is_active": True, "stock": {"$gte": quantity}},
                {"$inc": {"stock": -quantity}},
            )
        if product is not None:
            return product
        current = self.db["product"].find_one({"_id": product_id}) if product_id else None
        if current is None or not current.get("is_active", True):
            name = current["name"] if current else row["product_id"]
            raise ConflictError(f"{name} is no longer available")
        raise InsufficientStockError(row["product_id"], current["name"], quantity)

    def place_order(self, cart_id: str, user_id: str, shipping: Dict[str, Any]) -> Dict[str, Any]:
        """Turn the cart into an order.

        Each line's stock is reserved with a conditional decrement. Any failure
        before the order document is written gives the reserved stock back and
        leaves the cart as it was. Items are embedded in the order, so the
        order and its frozen prices land in a single write.
        """
        rows = list(self.db["cart_item"].find({"cart_id": cart_id}).sort("_id", 1))
        if not rows:
            raise EmptyCartError()

        reserved: List[Tuple[ObjectId, int]] = []
        items: List[OrderItem] = []
        try:
            for row in rows:
                product = self._reserve_line(row)
                reserved.append((product["_id"], int(row["quantity"])))
                items.append(OrderItem(
                    product_id=str(product["_id"]),
                    name=product["name"],
                    quantity=int(row["quantity"]),
                    price=int(product["price"]),
                ))
            total = sum(item.price * item.quantity for item in items)
            order = Order(user_id=user_id, items=items, total_amount=total, **shipping)
            res = self.db["order"].insert_one(order.model_dump())
        except Exception:
            self._release_stock(reserved)
            logger.warning("Order for cart %s aborted, released %d reservation(s)", cart_id, len(reserved))
            raise

        self.db["cart_item"].delete_many({"cart_id": cart_id})
        logger.info("Order %s placed by user %s, total %d", res.inserted_id, user_id, total)
        return self.get_order(res.inserted_id)

    def get_order(self, order_id: ObjectId) -> Optional[Dict[str, Any]]:
        return serialize_doc(self.db["order"].find_one({"_id": order_id}))

    def list_orders(self, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        query = {"user_id": user_id} if user_id is not None else {}
        cursor = self.db["order"].find(query).sort([("created_at", DESCENDING), ("_id", DESCENDING)])
        return [serialize_doc(d) for d in cursor]

    def update_order_status(self, order_id: ObjectId, status: str,
                            tracking_number: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Set an order's status; cancelling restores its stock exactly once.

        Every write is conditional on the order not being cancelled yet, so a
        cancel that lands concurrently can never be overwritten.
        """
        cancelled = OrderStatus.cancelled.value
        update: Dict[str, Any] = {"status": status, "updated_at": utcnow()}
        if tracking_number is not None:
            update["tracking_number"] = tracking_number
        open_order = {"_id": order_id, "status": {"$ne": cancelled}}
        if status == cancelled:
            before = self.db["order"].find_one_and_update(open_order, {"$set": update})
            if before is not None:
                self._release_stock((ObjectId(i["product_id"]), i["quantity"]) for i in before["items"])
                logger.info("Order %s cancelled, stock restored", order_id)
                return self.get_order(order_id)
            # already cancelled, only the tracking number may change
            res = self.db["order"].update_one({"_id": order_id}, {"$set": update})
        else:
            res = self.db["order"].update_one(open_order, {"$set": update})
        if res.matched_count == 0:
            if self.db["order"].find_one({"_id": order_id}) is None:
                return None
            raise ConflictError("Cancelled orders cannot be reopened")
        return self.get_order(order_id)

    # Uploaded files

    def add_file(self, file: UploadedFile) -> Dict[str, Any]:
        res = self.db["uploaded_file"].insert_one(file.model_dump())
        self.db["product"].update_one(
            {"_id": ObjectId(file.product_id)},
            {"$push": {"media_files": file.url}, "$set": {"updated_at": utcnow()}},
        )
        return serialize_doc(self.db["uploaded_file"].find_one({"_id": res.inserted_id}))

    def files_for_product(self, product_id: ObjectId) -> List[Dict[str, Any]]:
        cursor = self.db["uploaded_file"].find({"product_id": str(product_id)}).sort("_id", 1)
        return [serialize_doc(d) for d in cursor]

    def delete_file(self, file_id: ObjectId) -> Optional[Dict[str, Any]]:
        doc = self.db["uploaded_file"].find_one_and_delete({"_id": file_id})
        if doc is None:
            return None
        if ObjectId.is_valid(doc.get("product_id", "")):
            self.db["product"].update_one(
                {"_id": ObjectId(doc["product_id"])}, {"$pull": {"media_files": doc["url"]}}
            )
        return serialize_doc(doc)
