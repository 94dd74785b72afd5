from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship
from sqlalchemy.orm.collections import attribute_keyed_dict
from sqlalchemy.sql import func

from app.models.database import Base


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    price = Column(Numeric(12, 3), nullable=False)
    available_quantity = Column(Integer, nullable=False, default=0)
    in_stock = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Variants keyed by combination id.
    combinations = relationship(
        "ProductCombination",
        collection_class=attribute_keyed_dict("id"),
        order_by="ProductCombination.position",
        cascade="all, delete-orphan",
        back_populates="product",
    )


class ProductCombination(Base):
    __tablename__ = "product_combinations"

    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), primary_key=True)
    id = Column(String(64), primary_key=True)
    label = Column(String(255), nullable=True)
    stock = Column(Integer, nullable=False, default=0)
    position = Column(Integer, nullable=False, default=0)

    product = relationship("Product", back_populates="combinations")
