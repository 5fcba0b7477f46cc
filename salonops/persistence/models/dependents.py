"""Tables that hold a reference to a client.

Every table here is reachable from the merge registry, which rewrites its
client reference when duplicate clients are consolidated.
"""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import declared_attr

from salonops.persistence.database import Base


class ClientOwnedMixin:
    """Columns shared by records owned by a single client."""

    id = Column(Integer, primary_key=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    @declared_attr
    def organization_id(cls):
        return Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)

    @declared_attr
    def client_id(cls):
        return Column(Integer, ForeignKey("clients.id"), nullable=True, index=True)

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(id={self.id}, client_id={self.client_id})>"


class Appointment(ClientOwnedMixin, Base):
    """Booked appointment."""

    __tablename__ = "appointments"

    service_name = Column(String(255), nullable=True)
    starts_at = Column(DateTime, nullable=True)
    status = Column(String(30), default="booked", nullable=False)


class ArchivedAppointment(ClientOwnedMixin, Base):
    """Appointment moved out of the live calendar."""

    __tablename__ = "archived_appointments"

    service_name = Column(String(255), nullable=True)
    starts_at = Column(DateTime, nullable=True)
    archived_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ClientNote(ClientOwnedMixin, Base):
    """Free-form note written by staff about a client."""

    __tablename__ = "client_notes"

    body = Column(Text, nullable=False)
    author_id = Column(Integer, ForeignKey("users.id"), nullable=True)


class ClientEmailPreference(ClientOwnedMixin, Base):
    """Marketing and reminder email opt-ins."""

    __tablename__ = "client_email_preferences"

    marketing_opt_in = Column(Boolean, default=False, nullable=False)
    reminders_opt_in = Column(Boolean, default=True, nullable=False)


class ClientFeedbackResponse(ClientOwnedMixin, Base):
    """Post-visit feedback survey response."""

    __tablename__ = "client_feedback_responses"

    rating = Column(Integer, nullable=True)
    comment = Column(Text, nullable=True)


class ClientFormSignature(ClientOwnedMixin, Base):
    """Signed consultation or consent form."""

    __tablename__ = "client_form_signatures"

    form_name = Column(String(255), nullable=False)
    signed_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ClientPortalToken(ClientOwnedMixin, Base):
    """Magic-link token for the client self-service portal."""

    __tablename__ = "client_portal_tokens"

    token_hash = Column(String(128), nullable=False)
    expires_at = Column(DateTime, nullable=True)


class ClientAutomationLog(ClientOwnedMixin, Base):
    """Automation rule execution against a client."""

    __tablename__ = "client_automation_log"

    automation_key = Column(String(100), nullable=False)


class EmailSendLog(ClientOwnedMixin, Base):
    """Outbound email delivered to a client."""

    __tablename__ = "email_send_log"

    template_key = Column(String(100), nullable=True)
    status = Column(String(30), nullable=True)


class ReengagementOutreach(ClientOwnedMixin, Base):
    """Win-back outreach sent to a lapsed client."""

    __tablename__ = "reengagement_outreach"

    channel = Column(String(20), nullable=True)


class RefundRecord(ClientOwnedMixin, Base):
    """Refund issued to a client."""

    __tablename__ = "refund_records"

    amount = Column(Numeric(12, 2), nullable=False)
    reason = Column(Text, nullable=True)


class PromotionRedemption(ClientOwnedMixin, Base):
    """Use of a promotion code by a client."""

    __tablename__ = "promotion_redemptions"

    promotion_code = Column(String(50), nullable=False)


class KioskAnalytics(ClientOwnedMixin, Base):
    """Check-in kiosk event attributed to a client."""

    __tablename__ = "kiosk_analytics"

    event_type = Column(String(50), nullable=False)


class ServiceEmailQueue(ClientOwnedMixin, Base):
    """Queued service follow-up email."""

    __tablename__ = "service_email_queue"

    send_at = Column(DateTime, nullable=True)
    sent = Column(Boolean, default=False, nullable=False)


class BalanceTransaction(ClientOwnedMixin, Base):
    """Ledger entry against a client's salon credit or gift card balance."""

    __tablename__ = "balance_transactions"

    amount = Column(Numeric(12, 2), nullable=False)
    balance_type = Column(String(30), nullable=False)  # 'salon_credit', 'gift_card'


class PointsTransaction(ClientOwnedMixin, Base):
    """Ledger entry against a client's loyalty points."""

    __tablename__ = "points_transactions"

    points = Column(Integer, nullable=False)


class Voucher(Base):
    """Voucher issued to one client and possibly redeemed by another."""

    __tablename__ = "vouchers"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    code = Column(String(50), nullable=False)
    issued_to_client_id = Column(Integer, ForeignKey("clients.id"), nullable=True, index=True)
    redeemed_by_client_id = Column(Integer, ForeignKey("clients.id"), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<Voucher(id={self.id}, issued_to={self.issued_to_client_id}, "
            f"redeemed_by={self.redeemed_by_client_id})>"
        )


class PhorestAppointment(Base):
    """Appointment mirrored from Phorest, keyed by the Phorest client id."""

    __tablename__ = "phorest_appointments"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    phorest_id = Column(String(100), nullable=False)
    phorest_client_id = Column(String(100), nullable=True, index=True)
    starts_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<PhorestAppointment(id={self.id}, phorest_client_id={self.phorest_client_id})>"
