import uuid

from sqlalchemy import Column, String
from sqlalchemy.dialects.postgresql import UUID

from database import Base


class User(Base):
    __tablename__ = "users"
    __table_args__ = {"extend_existing": True}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(320), nullable=True, unique=True)
    # Denormalized cache of the current record; repaired rather than enforced by FK.
    active_membership_id = Column(UUID(as_uuid=True), nullable=True, index=True)
