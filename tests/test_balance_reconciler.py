"""Tests for additive balance reconciliation."""

from decimal import Decimal

import pytest

from factories import add_rows, create_client, reload_rows
from salonops.domain.services.balance_reconciler import (
    BalanceReconciler,
    from_json_amount,
    to_json_amount,
)
from salonops.persistence.models import ClientBalance, ClientLoyaltyPoints


def _by_key(outcomes):
    return {o.key: o for o in outcomes}


async def _balances(session, client_ids):
    rows = await reload_rows(session, ClientBalance, ClientBalance.client_id.in_(client_ids))
    return {row.client_id: row for row in rows}


async def _points(session, client_ids):
    rows = await reload_rows(session, ClientLoyaltyPoints, ClientLoyaltyPoints.client_id.in_(client_ids))
    return {row.client_id: row.points_balance for row in rows}


class TestJsonAmounts:
    def test_decimal_survives_round_trip(self):
        assert to_json_amount(Decimal("12.30")) == "12.30"
        assert from_json_amount("12.30") == Decimal("12.30")

    def test_integers_pass_through(self):
        assert to_json_amount(40) == 40
        assert from_json_amount(40) == 40


class TestReconcile:
    """Tests for BalanceReconciler.reconcile."""

    @pytest.mark.asyncio
    async def test_salon_credit_is_summed_onto_primary(self, db_session, organization_id):
        """Primary 10, secondaries 5 and 0: primary ends with 15, secondaries with 0."""
        org = organization_id
        p = await create_client(db_session, org)
        s1 = await create_client(db_session, org)
        s2 = await create_client(db_session, org)
        await add_rows(
            db_session,
            ClientBalance(organization_id=org, client_id=p, salon_credit_balance=Decimal("10")),
            ClientBalance(organization_id=org, client_id=s1, salon_credit_balance=Decimal("5")),
            ClientBalance(organization_id=org, client_id=s2, salon_credit_balance=Decimal("0")),
        )

        outcomes = _by_key(await BalanceReconciler(db_session).reconcile(org, p, [s1, s2]))

        assert outcomes["client_balances"].count == 1
        balances = await _balances(db_session, [p, s1, s2])
        assert balances[p].salon_credit_balance == Decimal("15")
        assert balances[s1].salon_credit_balance == Decimal("0")
        assert balances[s2].salon_credit_balance == Decimal("0")

    @pytest.mark.asyncio
    async def test_total_is_conserved_across_columns(self, db_session, organization_id):
        org = organization_id
        p = await create_client(db_session, org)
        s1 = await create_client(db_session, org)
        s2 = await create_client(db_session, org)
        await add_rows(
            db_session,
            ClientBalance(organization_id=org, client_id=p, salon_credit_balance=Decimal("2.50"), gift_card_balance=Decimal("20")),
            ClientBalance(organization_id=org, client_id=s1, salon_credit_balance=Decimal("7.25"), gift_card_balance=Decimal("0")),
            ClientBalance(organization_id=org, client_id=s2, salon_credit_balance=Decimal("0"), gift_card_balance=Decimal("30")),
        )
        before = await _balances(db_session, [p, s1, s2])
        credit_before = sum(b.salon_credit_balance for b in before.values())
        gift_before = sum(b.gift_card_balance for b in before.values())

        outcome = _by_key(await BalanceReconciler(db_session).reconcile(org, p, [s1, s2]))["client_balances"]

        after = await _balances(db_session, [p, s1, s2])
        assert sum(b.salon_credit_balance for b in after.values()) == credit_before
        assert sum(b.gift_card_balance for b in after.values()) == gift_before
        assert after[p].salon_credit_balance == Decimal("9.75")
        assert after[p].gift_card_balance == Decimal("50")
        assert outcome.count == 2
        assert set(outcome.transfers) == {s1, s2}

    @pytest.mark.asyncio
    async def test_primary_row_created_when_missing(self, db_session, organization_id):
        org = organization_id
        p = await create_client(db_session, org)
        s1 = await create_client(db_session, org)
        await add_rows(
            db_session,
            ClientBalance(organization_id=org, client_id=s1, gift_card_balance=Decimal("25")),
            ClientLoyaltyPoints(organization_id=org, client_id=s1, points_balance=120),
        )

        await BalanceReconciler(db_session).reconcile(org, p, [s1])

        balances = await _balances(db_session, [p, s1])
        assert balances[p].gift_card_balance == Decimal("25")
        assert balances[p].salon_credit_balance == Decimal("0")
        assert balances[s1].gift_card_balance == Decimal("0")
        assert await _points(db_session, [p, s1]) == {p: 120, s1: 0}

    @pytest.mark.asyncio
    async def test_no_primary_row_created_for_zero_balances(self, db_session, organization_id):
        org = organization_id
        p = await create_client(db_session, org)
        s1 = await create_client(db_session, org)
        await add_rows(db_session, ClientLoyaltyPoints(organization_id=org, client_id=s1, points_balance=0))

        outcomes = _by_key(await BalanceReconciler(db_session).reconcile(org, p, [s1]))

        assert outcomes["client_loyalty_points"].count == 0
        assert p not in await _points(db_session, [p])

    @pytest.mark.asyncio
    async def test_second_run_moves_nothing(self, db_session, organization_id):
        org = organization_id
        p = await create_client(db_session, org)
        s1 = await create_client(db_session, org)
        await add_rows(db_session, ClientLoyaltyPoints(organization_id=org, client_id=s1, points_balance=80))
        reconciler = BalanceReconciler(db_session)

        await reconciler.reconcile(org, p, [s1])
        outcomes = await reconciler.reconcile(org, p, [s1])

        assert all(o.count == 0 for o in outcomes)
        assert await _points(db_session, [p, s1]) == {p: 80, s1: 0}


class TestReverse:
    """Tests for BalanceReconciler.reverse."""

    @pytest.mark.asyncio
    async def test_reverse_restores_previous_balances(self, db_session, organization_id):
        org = organization_id
        p = await create_client(db_session, org)
        s1 = await create_client(db_session, org)
        await add_rows(
            db_session,
            ClientBalance(organization_id=org, client_id=p, salon_credit_balance=Decimal("10")),
            ClientBalance(organization_id=org, client_id=s1, salon_credit_balance=Decimal("5")),
        )
        reconciler = BalanceReconciler(db_session)
        outcome = _by_key(await reconciler.reconcile(org, p, [s1]))["client_balances"]

        # Transfers come back from the merge log as JSON
        recorded = {s1: {c: to_json_amount(v) for c, v in outcome.transfers[s1].items()}}
        outcomes = await reconciler.reverse(org, p, {"client_balances": recorded})

        assert outcomes[0].count == 1
        balances = await _balances(db_session, [p, s1])
        assert balances[p].salon_credit_balance == Decimal("10")
        assert balances[s1].salon_credit_balance == Decimal("5")

    @pytest.mark.asyncio
    async def test_unknown_key_is_skipped(self, db_session, organization_id):
        p = await create_client(db_session, organization_id)

        (outcome,) = await BalanceReconciler(db_session).reverse(
            organization_id, p, {"wallets": {p + 1: {"amount": "1.00"}}}
        )

        assert outcome.skipped
