"""ClientMergeLog model for audit trail of client merges."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON

from salonops.persistence.database import Base


class ClientMergeLog(Base):
    """Immutable audit record of one client merge operation."""

    __tablename__ = "client_merge_logs"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    primary_client_id = Column(Integer, ForeignKey("clients.id"), nullable=False, index=True)
    # Example: [17, 42]
    secondary_client_ids = Column(JSON, nullable=False)
    performed_by = Column(Integer, ForeignKey("users.id"), nullable=False)

    # Winning values written onto the primary
    # Example: {"email": "ana@example.com", "is_vip": true}
    field_resolutions = Column(JSON, nullable=True)

    # Full client rows read before any mutation, keyed by client id
    before_snapshots = Column(JSON, nullable=False)

    # Rows changed per registry key, e.g. {"appointments": 3, "client_notes": 0}
    reparenting_counts = Column(JSON, nullable=False)

    # Registry keys that failed and why, e.g. {"kiosk_analytics": "no such table"}
    skipped_tables = Column(JSON, nullable=True)

    # Row-level change record used by undo:
    # {"appointments": {"table": "appointments", "column": "client_id", "rows": {"5": 42}}}
    reparented_rows = Column(JSON, nullable=True)

    # {"client_balances": {"42": {"salon_credit_balance": "5.00", "gift_card_balance": "0.00"}}}
    balance_transfers = Column(JSON, nullable=True)

    # Earlier tombstones re-pointed at the primary: {"9": 42}
    repointed_tombstones = Column(JSON, nullable=True)

    undo_expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    def __repr__(self) -> str:
        return (
            f"<ClientMergeLog(id={self.id}, primary={self.primary_client_id}, "
            f"secondaries={self.secondary_client_ids}, at={self.created_at})>"
        )


class ClientMergeUndo(Base):
    """Record of a merge being reversed. The merge log itself is never modified.

    The row is written as soon as an undo takes the primary client's lock and
    tracks the tables already restored. completed_at stays null until the
    clients themselves are restored, so a failed undo can be resumed.
    """

    __tablename__ = "client_merge_undos"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    merge_log_id = Column(Integer, ForeignKey("client_merge_logs.id"), unique=True, nullable=False)
    performed_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    restored_counts = Column(JSON, default=dict, nullable=False)
    skipped_tables = Column(JSON, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<ClientMergeUndo(id={self.id}, merge_log_id={self.merge_log_id})>"
