"""Client model."""

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text

from salonops.persistence.database import Base


class ClientStatus(str, Enum):
    """Lifecycle status of a client record."""

    ACTIVE = "active"
    MERGING = "merging"  # Held by an in-flight merge or undo
    MERGED = "merged"


class Client(Base):
    """Client model representing a salon customer."""

    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)

    # Profile fields (resolvable during a merge)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    email = Column(String(255), nullable=True, index=True)
    phone = Column(String(50), nullable=True, index=True)
    notes = Column(Text, nullable=True)
    is_vip = Column(Boolean, default=False, nullable=False)
    lead_source = Column(String(100), nullable=True)
    preferred_stylist_id = Column(Integer, nullable=True)
    location_id = Column(Integer, nullable=True)

    # Identifier in the Phorest salon system, mirrored by phorest_appointments
    phorest_client_id = Column(String(100), nullable=True, index=True)

    # Lifecycle
    status = Column(String(20), default=ClientStatus.ACTIVE.value, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    merged_into_client_id = Column(Integer, ForeignKey("clients.id"), nullable=True, index=True)
    merged_at = Column(DateTime, nullable=True)
    merged_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    # Set while a merge or undo holds the record; used to find abandoned locks
    merge_locked_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<Client(id={self.id}, organization_id={self.organization_id}, status={self.status})>"
