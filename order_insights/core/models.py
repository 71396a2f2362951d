from sqlalchemy import Column, Index, Integer, String, Numeric, TIMESTAMP

from order_insights.core.database import Base


# =========================
# Order (fact table)
# =========================
class Order(Base):
    """
    One marketplace order. Written by the external ingestion processes,
    only ever read here.

    status is free-form ("paid", "cancelled", "shipped", ...) and only
    "paid" counts as realized revenue.
    """

    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)

    tenant_id = Column(String, nullable=False, index=True)

    marketplace = Column(String)  # "bagy", "ml", "shopee", "physical store"
    status = Column(String)

    total_amount = Column(Numeric(12, 2), nullable=False, default=0)

    order_date = Column(TIMESTAMP(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_orders_tenant_date", "tenant_id", "order_date"),
        Index("ix_orders_tenant_status", "tenant_id", "status"),
    )
