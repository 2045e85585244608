"""Rate catalog: commission categories and per-client pricing."""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, Boolean, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.core.database import Base


class RateType(Base):
    """Named commission category, e.g. Local, Outstation, OGL."""
    __tablename__ = "rate_types"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, unique=True)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class Rate(Base):
    """Price charged to a client for one product / verification type / rate type."""
    __tablename__ = "rates"

    id = Column(Integer, primary_key=True, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False, index=True)
    product_id = Column(Integer, nullable=False, index=True)
    verification_type_id = Column(Integer, nullable=False, index=True)
    rate_type_id = Column(Integer, ForeignKey("rate_types.id"), nullable=False, index=True)

    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    is_active = Column(Boolean, default=True)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    rate_type = relationship("RateType")


class CommissionRateType(Base):
    """Administrative default commission for a rate type.

    Not consulted by assignment resolution; per-agent assignments supersede it.
    """
    __tablename__ = "commission_rate_types"

    id = Column(Integer, primary_key=True, index=True)
    rate_type_id = Column(Integer, ForeignKey("rate_types.id"), nullable=False, unique=True)
    commission_amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    is_active = Column(Boolean, default=True)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    rate_type = relationship("RateType")

    @property
    def rate_type_name(self):
        return self.rate_type.name if self.rate_type else None
