from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from pos_backend.money import Money, MoneyType

# BIGINT keys on PostgreSQL; SQLite only autoincrements INTEGER PRIMARY KEY.
BigId = BigInteger().with_variant(Integer, 'sqlite')


class Base(DeclarativeBase):
    pass


class UserRole(str, Enum):
    ADMIN = 'ADMIN'
    SALES = 'SALES'
    INVENTORY = 'INVENTORY'


class UnitSizeUnit(str, Enum):
    ML = 'ML'
    L = 'L'
    G = 'G'
    KG = 'KG'
    PCS = 'PCS'


class MovementType(str, Enum):
    IN = 'IN'
    OUT = 'OUT'


class MovementRefType(str, Enum):
    OPENING = 'OPENING'
    PURCHASE = 'PURCHASE'
    ADJUSTMENT = 'ADJUSTMENT'
    INVOICE = 'INVOICE'
    INVOICE_VOID = 'INVOICE_VOID'
    SYNC_CATCH_UP = 'SYNC_CATCH_UP'


class InvoiceStatus(str, Enum):
    COMPLETED = 'COMPLETED'
    VOID = 'VOID'


class Store(Base):
    __tablename__ = 'stores'

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    region: Mapped[str | None] = mapped_column(Text)
    city: Mapped[str | None] = mapped_column(Text)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class User(Base):
    __tablename__ = 'users'

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    username: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    role: Mapped[UserRole] = mapped_column(SQLEnum(UserRole, name='user_role'), nullable=False)
    store_id: Mapped[int | None] = mapped_column(BigId, ForeignKey('stores.id'))
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Manufacturer(Base):
    __tablename__ = 'manufacturers'

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Brand(Base):
    __tablename__ = 'brands'
    __table_args__ = (
        UniqueConstraint('name', 'manufacturer_id', name='brands_name_manufacturer_key'),
    )

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    manufacturer_id: Mapped[int] = mapped_column(BigId, ForeignKey('manufacturers.id'), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Category(Base):
    __tablename__ = 'categories'

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Product(Base):
    __tablename__ = 'products'
    __table_args__ = (
        UniqueConstraint('sku', 'store_id', name='products_sku_store_id_key'),
        CheckConstraint('unit_price >= 0', name='products_unit_price_non_negative_ck'),
    )

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    sku: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    store_id: Mapped[int] = mapped_column(BigId, ForeignKey('stores.id'), nullable=False, index=True)
    category_id: Mapped[int] = mapped_column(BigId, ForeignKey('categories.id'), nullable=False)
    brand_id: Mapped[int] = mapped_column(BigId, ForeignKey('brands.id'), nullable=False)
    manufacturer_id: Mapped[int] = mapped_column(BigId, ForeignKey('manufacturers.id'), nullable=False)
    unit_price: Mapped[Money] = mapped_column(MoneyType(), nullable=False)
    unit_size_value: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    unit_size_unit: Mapped[UnitSizeUnit | None] = mapped_column(SQLEnum(UnitSizeUnit, name='unit_size_unit'))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    category: Mapped[Category] = relationship(lazy='joined')
    brand: Mapped[Brand] = relationship(lazy='joined')
    manufacturer: Mapped[Manufacturer] = relationship(lazy='joined')


class InventoryRecord(Base):
    __tablename__ = 'inventory'
    __table_args__ = (
        CheckConstraint('qty_on_hand >= 0', name='inventory_qty_non_negative_ck'),
    )

    store_id: Mapped[int] = mapped_column(BigId, ForeignKey('stores.id', ondelete='CASCADE'), primary_key=True)
    product_id: Mapped[int] = mapped_column(BigId, ForeignKey('products.id', ondelete='CASCADE'), primary_key=True)
    qty_on_hand: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class InventoryMovement(Base):
    __tablename__ = 'inventory_movements'
    __table_args__ = (
        CheckConstraint('qty > 0', name='inventory_movements_qty_positive_ck'),
        Index('inventory_movements_store_product_idx', 'store_id', 'product_id'),
        Index('inventory_movements_ref_idx', 'ref_type', 'ref_id'),
    )

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    store_id: Mapped[int] = mapped_column(BigId, ForeignKey('stores.id'), nullable=False)
    product_id: Mapped[int] = mapped_column(BigId, ForeignKey('products.id'), nullable=False)
    type: Mapped[MovementType] = mapped_column(SQLEnum(MovementType, name='movement_type'), nullable=False)
    qty: Mapped[int] = mapped_column(Integer, nullable=False)
    ref_type: Mapped[MovementRefType] = mapped_column(
        SQLEnum(MovementRefType, name='movement_ref_type'), nullable=False
    )
    ref_id: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Invoice(Base):
    __tablename__ = 'invoices'
    __table_args__ = (
        UniqueConstraint('store_id', 'client_invoice_ref', name='invoices_store_client_ref_key'),
        CheckConstraint('total_items > 0', name='invoices_total_items_positive_ck'),
    )

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    store_id: Mapped[int] = mapped_column(BigId, ForeignKey('stores.id'), nullable=False, index=True)
    worker_id: Mapped[int] = mapped_column(BigId, ForeignKey('users.id'), nullable=False)
    total_amount: Mapped[Money] = mapped_column(MoneyType(), nullable=False)
    total_items: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[InvoiceStatus] = mapped_column(
        SQLEnum(InvoiceStatus, name='invoice_status'),
        nullable=False,
        default=InvoiceStatus.COMPLETED,
        server_default='COMPLETED',
    )
    client_invoice_ref: Mapped[str | None] = mapped_column(Text)
    pdf_url: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    voided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    voided_by_user_id: Mapped[int | None] = mapped_column(BigId, ForeignKey('users.id'))
    void_reason: Mapped[str | None] = mapped_column(Text)

    items: Mapped[list[InvoiceItem]] = relationship(
        back_populates='invoice',
        cascade='all, delete-orphan',
        order_by='InvoiceItem.id',
    )


class InvoiceItem(Base):
    __tablename__ = 'invoice_items'
    __table_args__ = (
        CheckConstraint('qty > 0', name='invoice_items_qty_positive_ck'),
    )

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    invoice_id: Mapped[int] = mapped_column(BigId, ForeignKey('invoices.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id: Mapped[int] = mapped_column(BigId, ForeignKey('products.id'), nullable=False)
    qty: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Money] = mapped_column(MoneyType(), nullable=False)
    line_total: Mapped[Money] = mapped_column(MoneyType(), nullable=False)

    invoice: Mapped[Invoice] = relationship(back_populates='items')
    product: Mapped[Product] = relationship()


class AuditLog(Base):
    __tablename__ = 'audit_log'

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    actor_user_id: Mapped[int | None] = mapped_column(BigId, ForeignKey('users.id'))
    action: Mapped[str] = mapped_column(Text, nullable=False)
    invoice_id: Mapped[int | None] = mapped_column(BigId, ForeignKey('invoices.id'))
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict, server_default='{}')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
