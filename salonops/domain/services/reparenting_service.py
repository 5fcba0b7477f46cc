"""Reference reparenting engine for client merges."""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from sqlalchemy import column, select, table, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.expression import TableClause

from salonops.domain.models.client_merge import TableOutcome
from salonops.domain.services.merge_registry import (
    DEFAULT_REGISTRY,
    DependentTable,
    IdentifierKind,
    MergeStrategy,
    entries_for,
)
from salonops.persistence.database import Base

logger = logging.getLogger(__name__)


@dataclass
class ReparentContext:
    """Identifiers of one merge group."""

    organization_id: int
    primary_id: int
    secondary_ids: list[int]
    primary_external_id: str | None = None
    secondary_external_ids: list[str] = field(default_factory=list)


def resolve_table(name: str, *column_names: str) -> TableClause:
    """Return the mapped table for ``name``, or a bare table clause.

    Unmapped names still produce a usable clause; if the table or a column
    does not exist in the database the statement fails and the caller skips
    the entry.
    """
    mapped = Base.metadata.tables.get(name)
    if mapped is not None:
        return mapped
    return table(name, *(column(c) for c in column_names))


def describe_failure(exc: Exception) -> str:
    """Short, single-line reason for a failed table operation."""
    if isinstance(exc, DBAPIError) and exc.orig is not None:
        detail = str(exc.orig)
    else:
        detail = str(exc)
    return f"{type(exc).__name__}: {detail.splitlines()[0] if detail else ''}".strip()


async def run_isolated(
    session: AsyncSession,
    key: str,
    operation: Callable[[], Awaitable[TableOutcome]],
) -> TableOutcome:
    """Run one table operation as its own transaction.

    Any failure rolls back only this operation and comes back as a skipped
    outcome; earlier tables stay committed.
    """
    try:
        outcome = await operation()
        await session.commit()
        return outcome
    except Exception as e:
        await session.rollback()
        outcome = TableOutcome.skip(key, describe_failure(e))
        logger.warning(
            f"Skipping {key} during client merge: {outcome.skip_reason}",
            exc_info=True,
            extra={"registry_key": key},
        )
        return outcome


class ReparentingService:
    """Rewrites client references in dependent tables from secondaries to the primary."""

    def __init__(
        self, session: AsyncSession, registry: tuple[DependentTable, ...] = DEFAULT_REGISTRY
    ) -> None:
        """Initialize reparenting service."""
        self.session = session
        self.registry = registry

    async def reparent(self, context: ReparentContext) -> list[TableOutcome]:
        """Reparent every REPARENT and CUSTOM registry entry.

        Entries are processed independently; a failing entry is skipped and
        the rest still run. Re-running for the same group matches no rows.

        Args:
            context: Merge group identifiers

        Returns:
            One outcome per rewritten column
        """
        outcomes: list[TableOutcome] = []
        for entry in entries_for(self.registry, MergeStrategy.REPARENT, MergeStrategy.CUSTOM):
            if entry.strategy == MergeStrategy.CUSTOM:
                outcomes.extend(await self._run_custom(entry, context))
            else:
                outcomes.append(
                    await self.reparent_column(
                        context, entry.key, entry.table, entry.column, entry.identifier
                    )
                )
        return outcomes

    async def reparent_column(
        self,
        context: ReparentContext,
        key: str,
        table_name: str,
        column_name: str,
        identifier: IdentifierKind = IdentifierKind.INTERNAL,
    ) -> TableOutcome:
        """Point one reference column at the primary client.

        Args:
            context: Merge group identifiers
            key: Name the count is reported under
            table_name: Dependent table
            column_name: Column holding the client reference
            identifier: Whether the column holds internal or external ids

        Returns:
            Outcome with the changed row ids and their previous values
        """
        if identifier == IdentifierKind.EXTERNAL:
            from_values: list[Any] = list(context.secondary_external_ids)
            to_value: Any = context.primary_external_id
            if from_values and not to_value:
                return TableOutcome.skip(key, "primary client has no external id")
        else:
            from_values = list(context.secondary_ids)
            to_value = context.primary_id

        if not from_values:
            return TableOutcome(key=key, table=table_name, column=column_name)

        async def _rewrite() -> TableOutcome:
            tbl = resolve_table(table_name, "id", "organization_id", column_name)
            ref = tbl.c[column_name]
            stmt = select(tbl.c.id, ref).where(
                ref.in_(from_values),
                tbl.c.organization_id == context.organization_id,
            )
            rows = (await self.session.execute(stmt)).all()
            if rows:
                await self.session.execute(
                    update(tbl)
                    .where(tbl.c.id.in_([row[0] for row in rows]), ref.in_(from_values))
                    .values({column_name: to_value})
                )
            return TableOutcome(
                key=key,
                count=len(rows),
                changed_rows={row[0]: row[1] for row in rows},
                table=table_name,
                column=column_name,
                new_value=to_value,
            )

        return await run_isolated(self.session, key, _rewrite)

    async def restore_column(
        self,
        organization_id: int,
        key: str,
        table_name: str,
        column_name: str,
        rows: dict[int, Any],
        current_value: Any,
        record: Callable[[TableOutcome], Awaitable[None]] | None = None,
    ) -> TableOutcome:
        """Put recorded rows back on their previous client.

        Only rows still pointing at ``current_value`` are restored, so rows
        re-assigned after the merge are left alone. ``record`` runs inside the
        same transaction as the restore.
        """
        if not rows:
            return TableOutcome(key=key, table=table_name, column=column_name)

        by_original: dict[Any, list[int]] = {}
        for row_id, original in rows.items():
            by_original.setdefault(original, []).append(row_id)

        async def _restore() -> TableOutcome:
            tbl = resolve_table(table_name, "id", "organization_id", column_name)
            ref = tbl.c[column_name]
            restored = 0
            for original, row_ids in by_original.items():
                result = await self.session.execute(
                    update(tbl)
                    .where(
                        tbl.c.id.in_(row_ids),
                        ref == current_value,
                        tbl.c.organization_id == organization_id,
                    )
                    .values({column_name: original})
                )
                restored += result.rowcount or 0
            outcome = TableOutcome(key=key, count=restored, table=table_name, column=column_name)
            if record is not None:
                await record(outcome)
            return outcome

        return await run_isolated(self.session, key, _restore)

    async def _run_custom(
        self, entry: DependentTable, context: ReparentContext
    ) -> list[TableOutcome]:
        """Run a CUSTOM entry's handler, skipping it if the handler itself fails."""
        if entry.handler is None:
            return [TableOutcome.skip(entry.key, "custom entry has no handler")]
        try:
            return await entry.handler(self, entry, context)
        except Exception as e:
            await self.session.rollback()
            logger.warning(f"Custom merge handler for {entry.key} failed: {e}", exc_info=True)
            return [TableOutcome.skip(entry.key, describe_failure(e))]
