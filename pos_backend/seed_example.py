from decimal import Decimal

from sqlalchemy import select

from pos_backend.db import SessionLocal, engine
from pos_backend.models import (
    Base,
    Brand,
    Category,
    Manufacturer,
    MovementRefType,
    Product,
    Store,
    UnitSizeUnit,
    User,
    UserRole,
)
from pos_backend.money import Money
from pos_backend.services.inventory_ledger import InventoryLedger

DEMO_PRODUCTS = [
    # sku, name, category, brand, manufacturer, price, size, unit, opening stock
    ('8901030865278', 'Sparkling Water 500ml', 'Beverages', 'Clearspring', 'Northfield Foods', '1.20', '500', UnitSizeUnit.ML, 48),
    ('8901030865285', 'Orange Juice 1L', 'Beverages', 'Sunpress', 'Northfield Foods', '3.45', '1', UnitSizeUnit.L, 24),
    ('8901725133221', 'Basmati Rice 5kg', 'Groceries', 'Golden Field', 'Harvest Mills', '35.00', '5', UnitSizeUnit.KG, 10),
    ('8901725133238', 'Whole Wheat Flour 1kg', 'Groceries', 'Golden Field', 'Harvest Mills', '2.80', '1', UnitSizeUnit.KG, 30),
    ('8904004400014', 'Dish Soap 750ml', 'Household', 'Brightly', 'CleanCo', '4.99', '750', UnitSizeUnit.ML, 15),
]


def _get_or_create(db, model, **lookup):
    row = db.execute(select(model).filter_by(**lookup)).scalar_one_or_none()
    if not row:
        row = model(**lookup)
        db.add(row)
        db.flush()
    return row


def seed() -> None:
    Base.metadata.create_all(engine)
    with SessionLocal() as db:
        store = db.execute(select(Store).where(Store.name == 'Downtown')).scalar_one_or_none()
        if not store:
            store = Store(name='Downtown', region='Central', city='Springfield', active=True)
            db.add(store)
            db.flush()

        for username, role, store_id in (
            ('admin', UserRole.ADMIN, None),
            ('cashier1', UserRole.SALES, store.id),
            ('stock1', UserRole.INVENTORY, store.id),
        ):
            user = db.execute(select(User).where(User.username == username)).scalar_one_or_none()
            if not user:
                db.add(User(username=username, role=role, store_id=store_id, active=True))
        db.flush()

        ledger = InventoryLedger(db)
        for sku, name, category_name, brand_name, manufacturer_name, price, size, unit, opening in DEMO_PRODUCTS:
            existing = db.execute(
                select(Product).where(Product.store_id == store.id, Product.sku == sku)
            ).scalar_one_or_none()
            if existing:
                continue
            manufacturer = _get_or_create(db, Manufacturer, name=manufacturer_name)
            brand = _get_or_create(db, Brand, name=brand_name, manufacturer_id=manufacturer.id)
            category = _get_or_create(db, Category, name=category_name)
            product = Product(
                sku=sku,
                name=name,
                store_id=store.id,
                category_id=category.id,
                brand_id=brand.id,
                manufacturer_id=manufacturer.id,
                unit_price=Money.of(price),
                unit_size_value=Decimal(size),
                unit_size_unit=unit,
            )
            db.add(product)
            db.flush()
            # Opening stock goes through the ledger so movements balance from the first row.
            ledger.increment(store.id, product.id, opening, ref_type=MovementRefType.OPENING, ref_id='seed')

        db.commit()


if __name__ == '__main__':
    seed()
    print('Seed data inserted/verified.')
