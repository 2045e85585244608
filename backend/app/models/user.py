from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.sql import func
from app.core.database import Base
import enum


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    BACKEND_USER = "backend_user"
    FIELD_AGENT = "field_agent"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    username = Column(String, unique=True, index=True, nullable=False)
    full_name = Column(String, nullable=True)

    role = Column(String, default=UserRole.FIELD_AGENT.value, nullable=False)
    is_active = Column(Boolean, default=True)

    # Field-agent specific
    employee_code = Column(String, unique=True, nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    @property
    def is_field_agent(self) -> bool:
        return (self.role or "").lower() == UserRole.FIELD_AGENT.value
