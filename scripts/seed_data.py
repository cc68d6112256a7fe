from __future__ import annotations

import argparse

from services.api.app.db.database import db_session
from services.api.app.db.init_db import init_db
from services.api.app.db.models import Product
from services.api.app.services.address_book import AddressBook, AddressFields

CATALOG = (
    ("p1", "Ultra-Slim Power Bank 20000mAh", 3500, 50),
    ("p2", "Noise Cancelling Headphones", 8500, 20),
    ("p3", "Mechanical Gaming Keyboard", 6000, 15),
    ("p4", "Digiflow Developer Hoodie", 2500, 100),
    ("p5", "Smart Watch Series X", 12000, 30),
    ("p6", "USB-C Hub Multiport", 4500, 45),
    ("p7", "Wireless Charging Stand", 2800, 60),
    ("p8", "Rugged Shockproof Case (iPhone 14/15)", 1500, 100),
)


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed a demo catalog and customer address")
    parser.add_argument("--customer-id", default="cust-1")
    parser.add_argument("--recipient", default="Jane Wanjiku")
    parser.add_argument("--phone", default="0712345678")
    parser.add_argument("--street", default="Moi Avenue, Bazaar Plaza 3rd floor")
    parser.add_argument("--city", default="CBD")
    parser.add_argument("--region", default="Nairobi")
    args = parser.parse_args()

    init_db()

    db = db_session()
    try:
        for product_id, name, price, stock in CATALOG:
            if db.get(Product, product_id) is None:
                db.add(Product(id=product_id, name=name, price=price, stock=stock))
        db.commit()

        book = AddressBook(db, args.customer_id)
        if book.default_address() is None:
            book.add_address(
                AddressFields(
                    recipient_name=args.recipient,
                    phone=args.phone,
                    street=args.street,
                    city=args.city,
                    region=args.region,
                    is_default=True,
                )
            )

        print(f"Seeded {len(CATALOG)} products and customer={args.customer_id}")
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
