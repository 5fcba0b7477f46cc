"""Additive reconciliation of client balances during a merge."""

import logging
from decimal import Decimal
from typing import Any, Awaitable, Callable

from sqlalchemy import insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from salonops.domain.models.client_merge import TableOutcome
from salonops.domain.services.merge_registry import (
    DEFAULT_REGISTRY,
    DependentTable,
    MergeStrategy,
    entries_for,
)
from salonops.domain.services.reparenting_service import resolve_table, run_isolated

logger = logging.getLogger(__name__)


def to_json_amount(value: Any) -> Any:
    """Store Decimals as strings so amounts survive JSON without rounding."""
    return str(value) if isinstance(value, Decimal) else value


def from_json_amount(value: Any) -> Any:
    return Decimal(value) if isinstance(value, str) else value


class BalanceReconciler:
    """Moves secondary balances onto the primary client.

    For every ADDITIVE_RECONCILE registry entry: the secondaries' balances are
    summed and added to the primary (creating its row if needed), then the
    secondaries are zeroed. Rows are never deleted.
    """

    def __init__(
        self, session: AsyncSession, registry: tuple[DependentTable, ...] = DEFAULT_REGISTRY
    ) -> None:
        """Initialize balance reconciler."""
        self.session = session
        self.registry = registry

    async def reconcile(
        self, organization_id: int, primary_id: int, secondary_ids: list[int]
    ) -> list[TableOutcome]:
        """Reconcile all balance tables for a merge group.

        Args:
            organization_id: Organization ID
            primary_id: Surviving client
            secondary_ids: Clients being merged away

        Returns:
            One outcome per balance table; count is the number of secondary
            rows whose balance moved
        """
        outcomes = []
        for entry in entries_for(self.registry, MergeStrategy.ADDITIVE_RECONCILE):
            outcomes.append(
                await run_isolated(
                    self.session,
                    entry.key,
                    lambda entry=entry: self._reconcile_table(
                        entry, organization_id, primary_id, secondary_ids
                    ),
                )
            )
        return outcomes

    async def _reconcile_table(
        self,
        entry: DependentTable,
        organization_id: int,
        primary_id: int,
        secondary_ids: list[int],
    ) -> TableOutcome:
        columns = entry.balance_columns
        tbl = resolve_table(entry.table, "id", "organization_id", entry.column, *columns)
        ref = tbl.c[entry.column]

        stmt = select(tbl.c.id, ref, *(tbl.c[c] for c in columns)).where(
            ref.in_([primary_id, *secondary_ids]),
            tbl.c.organization_id == organization_id,
        )
        rows = (await self.session.execute(stmt)).all()

        primary_row = next((row for row in rows if row[1] == primary_id), None)
        moved: dict[int, dict[str, Any]] = {}
        for row in rows:
            if row[1] == primary_id:
                continue
            amounts = {c: row[2 + i] or 0 for i, c in enumerate(columns)}
            if any(amounts.values()):
                moved[row[1]] = amounts

        if not moved:
            return TableOutcome(key=entry.key, table=entry.table, column=entry.column)

        totals = {c: sum((amounts[c] for amounts in moved.values()), 0) for c in columns}

        if primary_row is not None:
            await self.session.execute(
                update(tbl)
                .where(tbl.c.id == primary_row[0])
                .values({c: tbl.c[c] + totals[c] for c in columns})
            )
        else:
            await self.session.execute(
                insert(tbl).values(
                    {"organization_id": organization_id, entry.column: primary_id, **totals}
                )
            )

        await self.session.execute(
            update(tbl)
            .where(ref.in_(list(moved)), tbl.c.organization_id == organization_id)
            .values({c: 0 for c in columns})
        )

        logger.info(
            f"Reconciled {entry.key}: moved {len(moved)} secondary balance(s) onto client {primary_id}",
            extra={"registry_key": entry.key, "totals": {c: to_json_amount(v) for c, v in totals.items()}},
        )
        return TableOutcome(
            key=entry.key,
            count=len(moved),
            table=entry.table,
            column=entry.column,
            transfers=moved,
        )

    async def reverse(
        self,
        organization_id: int,
        primary_id: int,
        transfers: dict[str, dict[int, dict[str, Any]]],
        record: Callable[[TableOutcome], Awaitable[None]] | None = None,
    ) -> list[TableOutcome]:
        """Undo recorded transfers: subtract from the primary, restore the secondaries.

        Reversal is not idempotent, so callers that may retry pass ``record``
        to persist each finished table in the same transaction as its reversal.

        Args:
            organization_id: Organization ID
            primary_id: Client the balances were moved onto
            transfers: registry key -> client id -> column -> amount moved
            record: Optional hook run before each table commits

        Returns:
            One outcome per balance table
        """
        outcomes = []
        by_key = {entry.key: entry for entry in self.registry}
        for key, moved in transfers.items():
            entry = by_key.get(key)
            if entry is None:
                outcomes.append(TableOutcome.skip(key, "not in merge registry"))
                continue
            outcomes.append(
                await run_isolated(
                    self.session,
                    key,
                    lambda entry=entry, moved=moved: self._reverse_table(
                        entry, organization_id, primary_id, moved, record
                    ),
                )
            )
        return outcomes

    async def _reverse_table(
        self,
        entry: DependentTable,
        organization_id: int,
        primary_id: int,
        moved: dict[int, dict[str, Any]],
        record: Callable[[TableOutcome], Awaitable[None]] | None = None,
    ) -> TableOutcome:
        columns = entry.balance_columns
        tbl = resolve_table(entry.table, "id", "organization_id", entry.column, *columns)
        ref = tbl.c[entry.column]

        totals = {
            c: sum((from_json_amount(amounts.get(c, 0)) for amounts in moved.values()), 0)
            for c in columns
        }
        await self.session.execute(
            update(tbl)
            .where(ref == primary_id, tbl.c.organization_id == organization_id)
            .values({c: tbl.c[c] - totals[c] for c in columns})
        )
        for client_id, amounts in moved.items():
            await self.session.execute(
                update(tbl)
                .where(ref == client_id, tbl.c.organization_id == organization_id)
                .values({c: tbl.c[c] + from_json_amount(amounts.get(c, 0)) for c in columns})
            )
        outcome = TableOutcome(key=entry.key, count=len(moved), table=entry.table, column=entry.column)
        if record is not None:
            await record(outcome)
        return outcome
