"""Registry of client-referencing tables touched by a merge.

Each entry names a table, the column holding the client reference, and how
the merge engine treats it. New client-owned tables are supported by adding
an entry here; the engines iterate the registry generically.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, TYPE_CHECKING

if TYPE_CHECKING:
    from salonops.domain.models.client_merge import TableOutcome
    from salonops.domain.services.reparenting_service import ReparentContext, ReparentingService


class MergeStrategy(str, Enum):
    """How a registry entry is merged."""

    REPARENT = "reparent"  # Rewrite the reference column to the primary
    ADDITIVE_RECONCILE = "additive_reconcile"  # Sum into the primary, zero the secondaries
    CUSTOM = "custom"  # Dedicated handler


class IdentifierKind(str, Enum):
    """Which client identifier the reference column holds."""

    INTERNAL = "internal"  # clients.id
    EXTERNAL = "external"  # clients.phorest_client_id


CustomHandler = Callable[
    ["ReparentingService", "DependentTable", "ReparentContext"],
    Awaitable[list["TableOutcome"]],
]


@dataclass(frozen=True)
class DependentTable:
    """Descriptor for one client-referencing table."""

    key: str
    table: str
    column: str = "client_id"
    strategy: MergeStrategy = MergeStrategy.REPARENT
    identifier: IdentifierKind = IdentifierKind.INTERNAL
    # ADDITIVE_RECONCILE only: numeric columns summed into the primary
    balance_columns: tuple[str, ...] = ()
    # CUSTOM only
    handler: CustomHandler | None = None


async def reparent_vouchers(
    engine: "ReparentingService", entry: DependentTable, context: "ReparentContext"
) -> list["TableOutcome"]:
    """Rewrite both voucher references independently.

    A voucher can be issued to one client and redeemed by another, so each
    column is its own reparenting step with its own count.
    """
    return [
        await engine.reparent_column(context, "vouchers_issued", entry.table, "issued_to_client_id"),
        await engine.reparent_column(context, "vouchers_redeemed", entry.table, "redeemed_by_client_id"),
    ]


_CLIENT_ID_TABLES = (
    "appointments",
    "archived_appointments",
    "client_email_preferences",
    "client_feedback_responses",
    "client_form_signatures",
    "client_portal_tokens",
    "client_automation_log",
    "email_send_log",
    "reengagement_outreach",
    "refund_records",
    "promotion_redemptions",
    "kiosk_analytics",
    "service_email_queue",
    "balance_transactions",
    "points_transactions",
    "client_notes",
)

DEFAULT_REGISTRY: tuple[DependentTable, ...] = (
    *(DependentTable(key=name, table=name) for name in _CLIENT_ID_TABLES),
    DependentTable(
        key="vouchers",
        table="vouchers",
        column="issued_to_client_id",
        strategy=MergeStrategy.CUSTOM,
        handler=reparent_vouchers,
    ),
    DependentTable(
        key="phorest_appointments",
        table="phorest_appointments",
        column="phorest_client_id",
        identifier=IdentifierKind.EXTERNAL,
    ),
    DependentTable(
        key="client_balances",
        table="client_balances",
        strategy=MergeStrategy.ADDITIVE_RECONCILE,
        balance_columns=("salon_credit_balance", "gift_card_balance"),
    ),
    DependentTable(
        key="client_loyalty_points",
        table="client_loyalty_points",
        strategy=MergeStrategy.ADDITIVE_RECONCILE,
        balance_columns=("points_balance",),
    ),
)


def entries_for(
    registry: tuple[DependentTable, ...], *strategies: MergeStrategy
) -> list[DependentTable]:
    """Filter registry entries by strategy, preserving order."""
    return [entry for entry in registry if entry.strategy in strategies]
