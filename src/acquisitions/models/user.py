import enum

from sqlalchemy import Column, DateTime, Enum, Integer, String, Text
from sqlalchemy.sql import func

from ..database import Base


class UserRole(str, enum.Enum):
    """Roles a user row may hold."""

    USER = "user"
    ADMIN = "admin"


class User(Base):
    """SQLAlchemy model for application users."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(256), nullable=False)
    email = Column(String(256), unique=True, nullable=False)
    password = Column(Text, nullable=False)
    # Stored as plain text guarded by a CHECK constraint, not a native enum type
    role = Column(
        Enum(
            UserRole,
            name="user_role",
            native_enum=False,
            create_constraint=True,
            length=16,
            values_callable=lambda roles: [r.value for r in roles],
        ),
        nullable=False,
        default=UserRole.USER,
        server_default=UserRole.USER.value,
    )
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    # No onupdate: the timestamp only reflects creation unless set explicitly
    updated_at = Column(DateTime, nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', role='{self.role}')>"
