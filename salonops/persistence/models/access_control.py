"""Role and permission models.

These tables are owned by the role/permission subsystem. The merge engine
only reads them through the permission gate.
"""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from salonops.persistence.database import Base


class Permission(Base):
    """A named capability, e.g. ``client_merge``."""

    __tablename__ = "permissions"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False, index=True)
    description = Column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<Permission(id={self.id}, name={self.name})>"


class RolePermission(Base):
    """Grant of a permission to a role name."""

    __tablename__ = "role_permissions"
    __table_args__ = (UniqueConstraint("role", "permission_id", name="uq_role_permission"),)

    id = Column(Integer, primary_key=True, index=True)
    role = Column(String(50), nullable=False, index=True)  # 'owner', 'manager', 'front_desk', ...
    permission_id = Column(Integer, ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    permission = relationship("Permission")

    def __repr__(self) -> str:
        return f"<RolePermission(role={self.role}, permission_id={self.permission_id})>"


class UserRole(Base):
    """Role held by a user within one organization."""

    __tablename__ = "user_roles"
    __table_args__ = (UniqueConstraint("user_id", "organization_id", "role", name="uq_user_org_role"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(50), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<UserRole(user_id={self.user_id}, organization_id={self.organization_id}, role={self.role})>"


class PlatformRole(Base):
    """Elevated cross-organization role held by platform operators."""

    __tablename__ = "platform_roles"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(50), nullable=False)  # 'platform_admin', 'platform_support'
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<PlatformRole(user_id={self.user_id}, role={self.role})>"
