import enum

from sqlalchemy import BigInteger, Column, DateTime, Enum, ForeignKey, Identity, Index, Numeric, Text, func
from sqlalchemy.orm import declarative_base
from sqlalchemy.schema import CheckConstraint

Base = declarative_base()


class OrderStatus(enum.Enum):
    pending = "pending"
    paid = "paid"
    shipped = "shipped"


class User(Base):
    __tablename__ = "users"
    id = Column(BigInteger, primary_key=True)
    email = Column(Text, nullable=False, unique=True)
    full_name = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Order(Base):
    __tablename__ = "orders"
    id = Column(BigInteger, Identity(always=True), primary_key=True)
    user_id = Column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    status = Column(Enum(OrderStatus, name="order_status"), nullable=False, server_default="pending")
    amount = Column(Numeric(12, 2), nullable=False, server_default="0")
    __table_args__ = (
        CheckConstraint("amount >= 0", name="orders_amount_positive"),
        Index("orders_user_created_idx", "user_id", "id"),
        {
            "info": {
                "rls": True,
                "policies": [
                    {"name": "orders_owner", "for": "select", "to": ["authenticated"], "using": "user_id = current_user_id()"}
                ],
            }
        },
    )
