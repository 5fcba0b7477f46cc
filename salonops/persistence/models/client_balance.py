"""Stored-value balances held per client."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, func

from salonops.persistence.database import Base


class ClientBalance(Base):
    """Salon credit and gift card balance for a client."""

    __tablename__ = "client_balances"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"), unique=True, nullable=False, index=True)
    salon_credit_balance = Column(Numeric(12, 2), default=0, server_default="0", nullable=False)
    gift_card_balance = Column(Numeric(12, 2), default=0, server_default="0", nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, server_default=func.now(), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<ClientBalance(client_id={self.client_id}, "
            f"salon_credit={self.salon_credit_balance}, gift_card={self.gift_card_balance})>"
        )


class ClientLoyaltyPoints(Base):
    """Loyalty points balance for a client."""

    __tablename__ = "client_loyalty_points"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"), unique=True, nullable=False, index=True)
    points_balance = Column(Integer, default=0, server_default="0", nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, server_default=func.now(), nullable=False)

    def __repr__(self) -> str:
        return f"<ClientLoyaltyPoints(client_id={self.client_id}, points={self.points_balance})>"
