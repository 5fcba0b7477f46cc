"""Tests for client snapshots and field resolution."""

import pytest
from pydantic import ValidationError as PydanticValidationError
from unittest.mock import AsyncMock, patch

from sqlalchemy.exc import OperationalError

from factories import create_client, reload_client
from salonops.domain.errors import NotFoundError, PersistenceError
from salonops.domain.models.client_merge import RESOLVABLE_FIELDS, FieldResolutions
from salonops.domain.services.client_snapshot_service import ClientSnapshotService
from salonops.domain.services.field_resolver import FieldResolver


class TestFieldResolutions:
    """Tests for the field resolution model."""

    def test_only_set_fields_are_written(self):
        resolutions = FieldResolutions(email="ana@example.com", is_vip=True)
        assert resolutions.to_update() == {"email": "ana@example.com", "is_vip": True}

    def test_explicit_none_clears_field(self):
        resolutions = FieldResolutions(notes=None)
        assert resolutions.to_update() == {"notes": None}

    def test_unknown_field_rejected(self):
        with pytest.raises(PydanticValidationError):
            FieldResolutions(status="merged")

    def test_invalid_email_rejected(self):
        with pytest.raises(PydanticValidationError):
            FieldResolutions(email="not-an-email")

    def test_lifecycle_columns_not_resolvable(self):
        for field in ("status", "merged_into_client_id", "organization_id", "id"):
            assert field not in RESOLVABLE_FIELDS


class TestClientSnapshotService:
    """Tests for pre-merge snapshots."""

    @pytest.mark.asyncio
    async def test_captures_full_rows(self, db_session, organization_id):
        primary_id = await create_client(
            db_session, organization_id, first_name="Ana", email="ana@example.com", is_vip=True
        )
        secondary_id = await create_client(db_session, organization_id, first_name="Anna")

        snapshots = await ClientSnapshotService(db_session).capture(
            organization_id, primary_id, [secondary_id]
        )

        assert set(snapshots) == {primary_id, secondary_id}
        assert snapshots[primary_id].email == "ana@example.com"
        assert snapshots[primary_id].is_vip is True
        assert snapshots[primary_id].status == "active"
        assert snapshots[secondary_id].first_name == "Anna"

    @pytest.mark.asyncio
    async def test_missing_client_raises(self, db_session, organization_id):
        primary_id = await create_client(db_session, organization_id)

        with pytest.raises(NotFoundError) as exc_info:
            await ClientSnapshotService(db_session).capture(organization_id, primary_id, [9999])

        assert "9999" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_client_from_other_organization_not_found(
        self, db_session, organization_id, other_organization_id
    ):
        primary_id = await create_client(db_session, organization_id)
        foreign_id = await create_client(db_session, other_organization_id)

        with pytest.raises(NotFoundError):
            await ClientSnapshotService(db_session).capture(organization_id, primary_id, [foreign_id])


class TestFieldResolver:
    """Tests for applying resolutions to the primary client."""

    @pytest.mark.asyncio
    async def test_applies_values_to_primary_only(self, db_session, organization_id):
        primary_id = await create_client(db_session, organization_id, email="old@example.com")
        secondary_id = await create_client(db_session, organization_id, email="other@example.com")

        written = await FieldResolver(db_session).apply_resolutions(
            organization_id,
            primary_id,
            FieldResolutions(email="new@example.com", lead_source="walk-in"),
        )

        assert written == ["email", "lead_source"]
        primary = await reload_client(db_session, primary_id)
        assert primary.email == "new@example.com"
        assert primary.lead_source == "walk-in"
        secondary = await reload_client(db_session, secondary_id)
        assert secondary.email == "other@example.com"

    @pytest.mark.asyncio
    async def test_empty_resolutions_write_nothing(self, db_session, organization_id):
        primary_id = await create_client(db_session, organization_id, email="keep@example.com")

        written = await FieldResolver(db_session).apply_resolutions(
            organization_id, primary_id, FieldResolutions()
        )

        assert written == []
        assert (await reload_client(db_session, primary_id)).email == "keep@example.com"

    @pytest.mark.asyncio
    async def test_database_failure_raises_persistence_error(self, db_session, organization_id):
        primary_id = await create_client(db_session, organization_id)
        resolver = FieldResolver(db_session)

        failure = OperationalError("UPDATE clients", {}, Exception("database is locked"))
        with patch.object(resolver.client_repo, "update_fields", AsyncMock(side_effect=failure)):
            with pytest.raises(PersistenceError) as exc_info:
                await resolver.apply_resolutions(
                    organization_id, primary_id, FieldResolutions(first_name="X")
                )

        assert exc_info.value.status_code == 500
        assert exc_info.value.message.startswith("Failed to apply field resolutions")
