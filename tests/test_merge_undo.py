"""Tests for undoing client merges."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from unittest.mock import AsyncMock, patch
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from factories import add_rows, create_client, reload_client, reload_rows
from salonops.domain.errors import (
    AuthorizationError,
    NotFoundError,
    PersistenceError,
    UndoConflictError,
    UndoWindowExpiredError,
)
from salonops.domain.models.client_merge import FieldResolutions
from salonops.domain.services.client_merge_service import ClientMergeService
from salonops.domain.services.merge_undo_service import MergeUndoService
from salonops.persistence.models import (
    Appointment,
    ClientBalance,
    ClientMergeLog,
    ClientMergeUndo,
    ClientStatus,
    Voucher,
)
from salonops.persistence.repositories.client_repository import ClientRepository


@pytest.mark.asyncio
async def test_undo_restores_pre_merge_state(db_session, organization_id, merge_actor_id):
    """Rows, balances, fields and statuses all return to their pre-merge values."""
    org = organization_id
    p = await create_client(db_session, org, email="p@example.com", is_vip=False)
    s1 = await create_client(db_session, org, email="s1@example.com")
    s2 = await create_client(db_session, org)
    appointment_ids = await add_rows(
        db_session,
        Appointment(organization_id=org, client_id=s1),
        Appointment(organization_id=org, client_id=s2),
        Appointment(organization_id=org, client_id=p),
    )
    (voucher_id,) = await add_rows(
        db_session,
        Voucher(organization_id=org, code="GIFT", issued_to_client_id=s1, redeemed_by_client_id=s2),
    )
    await add_rows(
        db_session,
        ClientBalance(organization_id=org, client_id=p, salon_credit_balance=Decimal("10")),
        ClientBalance(organization_id=org, client_id=s1, salon_credit_balance=Decimal("5")),
    )
    summary = await ClientMergeService(db_session).merge_clients(
        org, p, [s1, s2], FieldResolutions(email="s1@example.com", is_vip=True), merge_actor_id
    )

    undo = await MergeUndoService(db_session).undo_merge(org, summary.merge_log_id, merge_actor_id)

    assert undo.restored_client_ids == [s1, s2]
    assert undo.restored_counts["clients"] == 2
    assert undo.restored_counts["appointments"] == 2
    assert undo.restored_counts["client_balances"] == 1

    primary = await reload_client(db_session, p)
    assert primary.email == "p@example.com"
    assert primary.is_vip is False
    assert primary.status == ClientStatus.ACTIVE.value
    for client_id in (s1, s2):
        secondary = await reload_client(db_session, client_id)
        assert secondary.status == ClientStatus.ACTIVE.value
        assert secondary.merged_into_client_id is None
        assert secondary.is_active is True

    owners = {
        a.id: a.client_id
        for a in await reload_rows(db_session, Appointment, Appointment.id.in_(appointment_ids))
    }
    assert owners == dict(zip(appointment_ids, [s1, s2, p]))
    (voucher,) = await reload_rows(db_session, Voucher, Voucher.id == voucher_id)
    assert (voucher.issued_to_client_id, voucher.redeemed_by_client_id) == (s1, s2)
    balances = {
        b.client_id: b.salon_credit_balance
        for b in await reload_rows(db_session, ClientBalance, ClientBalance.organization_id == org)
    }
    assert balances == {p: Decimal("10"), s1: Decimal("5")}

    (record,) = await reload_rows(
        db_session, ClientMergeUndo, ClientMergeUndo.merge_log_id == summary.merge_log_id
    )
    assert record.performed_by == merge_actor_id


@pytest.mark.asyncio
async def test_undo_restores_repointed_tombstones(db_session, organization_id, merge_actor_id):
    org = organization_id
    a = await create_client(db_session, org)
    b = await create_client(db_session, org)
    c = await create_client(db_session, org)
    service = ClientMergeService(db_session)
    await service.merge_clients(org, b, [a], None, merge_actor_id)
    second = await service.merge_clients(org, c, [b], None, merge_actor_id)

    await MergeUndoService(db_session).undo_merge(org, second.merge_log_id, merge_actor_id)

    assert (await reload_client(db_session, b)).status == ClientStatus.ACTIVE.value
    restored_a = await reload_client(db_session, a)
    assert restored_a.status == ClientStatus.MERGED.value
    assert restored_a.merged_into_client_id == b


@pytest.mark.asyncio
async def test_rows_moved_after_merge_stay_put(db_session, organization_id, merge_actor_id):
    org = organization_id
    p = await create_client(db_session, org)
    s1 = await create_client(db_session, org)
    other = await create_client(db_session, org)
    (appointment_id,) = await add_rows(db_session, Appointment(organization_id=org, client_id=s1))
    summary = await ClientMergeService(db_session).merge_clients(org, p, [s1], None, merge_actor_id)
    await db_session.execute(
        update(Appointment).where(Appointment.id == appointment_id).values(client_id=other)
    )
    await db_session.commit()

    undo = await MergeUndoService(db_session).undo_merge(org, summary.merge_log_id, merge_actor_id)

    assert undo.restored_counts["appointments"] == 0
    (appointment,) = await reload_rows(db_session, Appointment, Appointment.id == appointment_id)
    assert appointment.client_id == other


@pytest.mark.asyncio
async def test_undo_twice_conflicts(db_session, organization_id, merge_actor_id):
    org = organization_id
    p = await create_client(db_session, org)
    s1 = await create_client(db_session, org)
    summary = await ClientMergeService(db_session).merge_clients(org, p, [s1], None, merge_actor_id)
    service = MergeUndoService(db_session)
    await service.undo_merge(org, summary.merge_log_id, merge_actor_id)

    with pytest.raises(UndoConflictError) as exc_info:
        await service.undo_merge(org, summary.merge_log_id, merge_actor_id)

    assert exc_info.value.status_code == 409


@pytest.mark.asyncio
async def test_expired_window_rejected(db_session, organization_id, merge_actor_id):
    org = organization_id
    p = await create_client(db_session, org)
    s1 = await create_client(db_session, org)
    summary = await ClientMergeService(db_session).merge_clients(org, p, [s1], None, merge_actor_id)
    await db_session.execute(
        update(ClientMergeLog)
        .where(ClientMergeLog.id == summary.merge_log_id)
        .values(undo_expires_at=datetime.utcnow() - timedelta(minutes=1))
    )
    await db_session.commit()

    with pytest.raises(UndoWindowExpiredError) as exc_info:
        await MergeUndoService(db_session).undo_merge(org, summary.merge_log_id, merge_actor_id)

    assert exc_info.value.status_code == 410
    assert (await reload_client(db_session, s1)).status == ClientStatus.MERGED.value


@pytest.mark.asyncio
async def test_primary_merged_since_conflicts(db_session, organization_id, merge_actor_id):
    org = organization_id
    p = await create_client(db_session, org)
    s1 = await create_client(db_session, org)
    q = await create_client(db_session, org)
    service = ClientMergeService(db_session)
    first = await service.merge_clients(org, p, [s1], None, merge_actor_id)
    await service.merge_clients(org, q, [p], None, merge_actor_id)

    with pytest.raises(UndoConflictError):
        await MergeUndoService(db_session).undo_merge(org, first.merge_log_id, merge_actor_id)


@pytest.mark.asyncio
async def test_unknown_or_foreign_log_not_found(
    db_session, organization_id, other_organization_id, merge_actor_id, platform_user_id
):
    p = await create_client(db_session, organization_id)
    s1 = await create_client(db_session, organization_id)
    summary = await ClientMergeService(db_session).merge_clients(
        organization_id, p, [s1], None, merge_actor_id
    )
    service = MergeUndoService(db_session)

    with pytest.raises(NotFoundError):
        await service.undo_merge(organization_id, 99999, merge_actor_id)
    with pytest.raises(NotFoundError):
        await service.undo_merge(other_organization_id, summary.merge_log_id, platform_user_id)


@pytest.mark.asyncio
async def test_undo_requires_permission(
    db_session, organization_id, merge_actor_id, unprivileged_user_id
):
    p = await create_client(db_session, organization_id)
    s1 = await create_client(db_session, organization_id)
    summary = await ClientMergeService(db_session).merge_clients(
        organization_id, p, [s1], None, merge_actor_id
    )

    with pytest.raises(AuthorizationError):
        await MergeUndoService(db_session).undo_merge(
            organization_id, summary.merge_log_id, unprivileged_user_id
        )

    assert (await reload_client(db_session, s1)).status == ClientStatus.MERGED.value


async def _merge_with_credit(session, org, actor_id):
    p = await create_client(session, org)
    s1 = await create_client(session, org)
    (appointment_id,) = await add_rows(session, Appointment(organization_id=org, client_id=s1))
    await add_rows(
        session,
        ClientBalance(organization_id=org, client_id=p, salon_credit_balance=Decimal("10")),
        ClientBalance(organization_id=org, client_id=s1, salon_credit_balance=Decimal("5")),
    )
    summary = await ClientMergeService(session).merge_clients(org, p, [s1], None, actor_id)
    return p, s1, appointment_id, summary.merge_log_id


async def _credit_by_client(session, org):
    return {
        b.client_id: b.salon_credit_balance
        for b in await reload_rows(session, ClientBalance, ClientBalance.organization_id == org)
    }


@pytest.mark.asyncio
async def test_failed_undo_can_be_retried(db_session, organization_id, merge_actor_id):
    """Tables restored before a failure are not reversed a second time."""
    org = organization_id
    p, s1, appointment_id, merge_log_id = await _merge_with_credit(db_session, org, merge_actor_id)
    failure = OperationalError("UPDATE clients", {}, Exception("connection reset"))

    with patch.object(ClientRepository, "restore_tombstones", AsyncMock(side_effect=failure)):
        with pytest.raises(PersistenceError):
            await MergeUndoService(db_session).undo_merge(org, merge_log_id, merge_actor_id)

    (pending,) = await reload_rows(db_session, ClientMergeUndo, ClientMergeUndo.merge_log_id == merge_log_id)
    assert pending.completed_at is None
    assert pending.restored_counts == {"appointments": 1, "client_balances": 1}
    assert (await reload_client(db_session, p)).status == ClientStatus.ACTIVE.value
    assert (await reload_client(db_session, s1)).status == ClientStatus.MERGED.value

    undo = await MergeUndoService(db_session).undo_merge(org, merge_log_id, merge_actor_id)

    assert undo.restored_client_ids == [s1]
    assert undo.restored_counts["client_balances"] == 1
    assert await _credit_by_client(db_session, org) == {p: Decimal("10"), s1: Decimal("5")}
    (appointment,) = await reload_rows(db_session, Appointment, Appointment.id == appointment_id)
    assert appointment.client_id == s1
    assert (await reload_client(db_session, s1)).status == ClientStatus.ACTIVE.value
    (record,) = await reload_rows(db_session, ClientMergeUndo, ClientMergeUndo.merge_log_id == merge_log_id)
    assert record.completed_at is not None

    with pytest.raises(UndoConflictError):
        await MergeUndoService(db_session).undo_merge(org, merge_log_id, merge_actor_id)


@pytest.mark.asyncio
async def test_started_undo_can_finish_after_window(db_session, organization_id, merge_actor_id):
    org = organization_id
    p, s1, _, merge_log_id = await _merge_with_credit(db_session, org, merge_actor_id)
    failure = OperationalError("UPDATE clients", {}, Exception("connection reset"))
    with patch.object(ClientRepository, "restore_tombstones", AsyncMock(side_effect=failure)):
        with pytest.raises(PersistenceError):
            await MergeUndoService(db_session).undo_merge(org, merge_log_id, merge_actor_id)
    await db_session.execute(
        update(ClientMergeLog)
        .where(ClientMergeLog.id == merge_log_id)
        .values(undo_expires_at=datetime.utcnow() - timedelta(minutes=1))
    )
    await db_session.commit()

    await MergeUndoService(db_session).undo_merge(org, merge_log_id, merge_actor_id)

    assert (await reload_client(db_session, s1)).status == ClientStatus.ACTIVE.value
    assert await _credit_by_client(db_session, org) == {p: Decimal("10"), s1: Decimal("5")}


@pytest.mark.asyncio
async def test_competing_undo_is_rejected_after_lock(db_session, organization_id, merge_actor_id):
    """An undo that passed its checks loses to one that finished while it waited for the lock."""
    org = organization_id
    p, s1, _, merge_log_id = await _merge_with_credit(db_session, org, merge_actor_id)
    real_acquire = ClientRepository.acquire_merge_lock
    competitor_ran = False

    async def acquire_after_competing_undo(self, organization_id, client_ids):
        nonlocal competitor_ran
        if not competitor_ran:
            competitor_ran = True
            await MergeUndoService(db_session).undo_merge(org, merge_log_id, merge_actor_id)
        return await real_acquire(self, organization_id, client_ids)

    with patch.object(ClientRepository, "acquire_merge_lock", acquire_after_competing_undo):
        with pytest.raises(UndoConflictError):
            await MergeUndoService(db_session).undo_merge(org, merge_log_id, merge_actor_id)

    assert competitor_ran
    assert await _credit_by_client(db_session, org) == {p: Decimal("10"), s1: Decimal("5")}
    primary = await reload_client(db_session, p)
    assert primary.status == ClientStatus.ACTIVE.value
    assert primary.merge_locked_at is None
