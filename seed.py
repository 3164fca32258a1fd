"""
Default data and JSON export/import.

    python seed.py seed
    python seed.py export backup.json
    python seed.py import backup.json
"""

import argparse
import logging
from typing import Dict, List

from bson import json_util
from pymongo.database import Database

from config import ADMIN_EMAIL, ADMIN_PASSWORD, ADMIN_USERNAME, SEED_SAMPLE_PRODUCTS, setup_logging
from schemas import Category, Product, Role, User
from security import hash_password

logger = logging.getLogger(__name__)

COLLECTIONS = ["category", "product", "user", "cart_item", "order", "uploaded_file"]

DEFAULT_CATEGORIES = [
    ("frock", "Casual and formal dress materials for children and women"),
    ("lehenga", "Traditional Indian clothing for women, often worn during weddings and festivals"),
    ("kurta", "Traditional Indian clothing materials for men and women"),
    ("net", "Transparent, delicate fabrics used for overlays and decorative purposes"),
    ("cutpiece", "Pre-cut fabric pieces ready for specific garment patterns"),
]

SAMPLE_PRODUCTS = [
    dict(name="Royal Silk Lehenga Fabric", description="Premium silk fabric for lehenga, perfect for weddings and special occasions.",
         price=49900, image_url="https://images.unsplash.com/photo-1596942517067-59ecf323f71c",
         category="lehenga", stock=23, is_featured=True, sku="FB-LS-001"),
    dict(name="Premium Cotton Frock Fabric", description="Soft cotton fabric ideal for children's frocks and casual wear.",
         price=34900, image_url="https://images.unsplash.com/photo-1604917621956-10dfa7cce2e7",
         category="frock", stock=45, sku="FB-FR-002"),
    dict(name="Handloom Kurta Fabric", description="Traditional handloom fabric perfect for ethnic kurtas.",
         price=59900, image_url="https://images.unsplash.com/photo-1589891685388-c9038979ed0b",
         category="kurta", stock=12, sku="FB-KR-003"),
    dict(name="Embroidered Net Fabric", description="Delicate net fabric with beautiful embroidery for overlays and decorative purposes.",
         price=79900, image_url="https://images.unsplash.com/photo-1595515106883-5fedd5a53110",
         category="net", stock=35, sku="FB-NT-004"),
    dict(name="Designer Cut Piece", description="Pre-cut fabric piece ready for specific garment patterns.",
         price=29900, image_url="https://images.unsplash.com/photo-1558304970-abd589baebe5",
         category="cutpiece", stock=20, sku="FB-CP-005"),
    dict(name="Bridal Lehenga Fabric", description="Luxury fabric for bridal lehengas with intricate embellishments.",
         price=129900, image_url="https://images.unsplash.com/photo-1606603696914-2c60681ef707",
         category="lehenga", stock=8, is_featured=True, sku="FB-LS-006"),
    dict(name="Linen Kurta Fabric", description="Breathable linen fabric perfect for summer kurtas.",
         price=49900, image_url="https://images.unsplash.com/photo-1549349807-34dfcbe3ed16",
         category="kurta", stock=30, sku="FB-KR-007"),
    dict(name="Designer Frock Material", description="Premium material for designer frocks with unique patterns.",
         price=39900, image_url="https://images.unsplash.com/photo-1574201635302-388dd92a4c3f",
         category="frock", stock=18, sku="FB-FR-008"),
]


def seed_categories(db: Database) -> int:
    created = 0
    for name, description in DEFAULT_CATEGORIES:
        category = Category(name=name, description=description)
        res = db["category"].update_one(
            {"name": category.name},
            {"$setOnInsert": {"description": category.description}},
            upsert=True,
        )
        if res.upserted_id is not None:
            created += 1
    return created


def seed_admin(db: Database, username: str = ADMIN_USERNAME, password: str = ADMIN_PASSWORD,
               email: str = ADMIN_EMAIL) -> bool:
    if db["user"].find_one({"username": username}):
        return False
    admin = User(username=username, email=email, password_hash=hash_password(password), role=Role.admin)
    db["user"].insert_one(admin.model_dump())
    logger.info("Created admin account %s", username)
    return True


def seed_sample_products(db: Database) -> int:
    if db["product"].count_documents({}) > 0:
        return 0
    docs = [Product(**p).model_dump() for p in SAMPLE_PRODUCTS]
    db["product"].insert_many(docs)
    return len(docs)


def seed_defaults(db: Database, sample_products: bool = SEED_SAMPLE_PRODUCTS) -> Dict[str, int]:
    result = {
        "categories": seed_categories(db),
        "admin": int(seed_admin(db)),
        "products": seed_sample_products(db) if sample_products else 0,
    }
    logger.info("Seeded defaults: %s", result)
    return result


def export_data(db: Database) -> str:
    data: Dict[str, List[dict]] = {name: list(db[name].find()) for name in COLLECTIONS}
    return json_util.dumps(data, indent=2)


def import_data(db: Database, text: str, replace: bool = True) -> Dict[str, int]:
    data = json_util.loads(text)
    counts = {}
    for name in COLLECTIONS:
        docs = data.get(name, [])
        if replace:
            db[name].delete_many({})
        if docs:
            db[name].insert_many(docs)
        counts[name] = len(docs)
    return counts


def main(argv=None):
    parser = argparse.ArgumentParser(description="Fabric store data tools")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("seed", help="create default categories, admin and sample products")
    exp = sub.add_parser("export", help="dump all collections to a JSON file")
    exp.add_argument("path")
    imp = sub.add_parser("import", help="replace all collections from a JSON file")
    imp.add_argument("path")
    args = parser.parse_args(argv)

    setup_logging()
    from database import db, ensure_indexes

    if args.command == "seed":
        ensure_indexes(db)
        print(seed_defaults(db))
    elif args.command == "export":
        with open(args.path, "w", encoding="utf-8") as f:
            f.write(export_data(db))
        logger.info("Exported data to %s", args.path)
    elif args.command == "import":
        with open(args.path, encoding="utf-8") as f:
            counts = import_data(db, f.read())
        ensure_indexes(db)
        print(counts)


if __name__ == "__main__":
    main()
