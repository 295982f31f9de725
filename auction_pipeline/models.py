# auction_pipeline/models.py
"""SQLAlchemy ORM models for persisted entities.

Defines the `SaleRecord` model (the `sales_history` table). Rows are keyed by
(lot_id, site); collection only ever inserts with do-nothing-on-conflict, so a
stored row is never overwritten.
"""
from sqlalchemy import (
    Column, Integer, BigInteger, Text, Numeric, Boolean, TIMESTAMP, func, Index, UniqueConstraint
)
from .db import Base


class SaleRecord(Base):
    __tablename__ = "sales_history"
    __table_args__ = (
        UniqueConstraint("lot_id", "site", name="uq_sales_history_lot_site"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    lot_id = Column(BigInteger, nullable=False)
    site = Column(Integer, nullable=False)
    base_site = Column(Text, nullable=False)
    vin = Column(Text, nullable=False, default="")
    year = Column(Integer)
    make = Column(Text)
    model = Column(Text)
    series = Column(Text)
    trim = Column(Text)
    odometer = Column(Integer)
    damage_primary = Column(Text)
    damage_secondary = Column(Text)
    title_status = Column(Text)
    has_keys = Column(Boolean)
    transmission = Column(Text)
    drive = Column(Text)
    fuel = Column(Text)
    color = Column(Text)
    sale_status = Column(Text, nullable=False, default="Unknown")
    sale_date = Column(TIMESTAMP(timezone=True), nullable=False)
    purchase_price = Column(Numeric)
    current_bid = Column(Numeric)
    auction_location = Column(Text)
    # JSON-serialized list of image URLs
    images = Column(Text)
    link = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<SaleRecord lot={self.lot_id} site={self.site} {self.year} {self.make} {self.model}>"

Index("idx_sales_history_make_site_model", SaleRecord.make, SaleRecord.site, SaleRecord.model)
Index("idx_sales_history_sale_date", SaleRecord.sale_date)
Index("idx_sales_history_year", SaleRecord.year)
Index("idx_sales_history_created_at", SaleRecord.created_at)
