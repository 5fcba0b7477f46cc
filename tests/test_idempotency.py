"""Tests for idempotency behavior."""

import pytest
from unittest.mock import AsyncMock, patch

from factories import auth_headers, create_client, reload_client
from salonops.core.idempotency import generate_idempotency_key
from salonops.infrastructure.redis import redis_client
from salonops.persistence.models import ClientStatus

MERGE_URL = "/api/v1/clients/merge"


@pytest.fixture
def redis_store():
    """In-memory stand-in for the Redis idempotency cache."""
    store: dict[str, dict] = {}

    async def get_json(key):
        return store.get(key)

    async def set_json(key, value, ttl=None):
        store[key] = value
        return True

    with patch.object(type(redis_client), "enabled", property(lambda self: True)), \
            patch.object(redis_client, "get_json", AsyncMock(side_effect=get_json)), \
            patch.object(redis_client, "set_json", AsyncMock(side_effect=set_json)):
        yield store


def test_idempotency_key_generation():
    """Test idempotency key generation."""
    key1 = generate_idempotency_key("POST", "/clients/merge", "abc", actor="Bearer a")
    key2 = generate_idempotency_key("POST", "/clients/merge", "abc", actor="Bearer a")

    # Same inputs should generate same key
    assert key1 == key2

    # Different inputs should generate different keys
    assert key1 != generate_idempotency_key("POST", "/clients/merge", "abd", actor="Bearer a")
    assert key1 != generate_idempotency_key("POST", "/clients/merge/preview", "abc", actor="Bearer a")


def test_idempotency_key_scoped_to_actor():
    """Two callers sending the same key never share a cached response."""
    key1 = generate_idempotency_key("POST", "/clients/merge", "abc", actor="Bearer a")
    key2 = generate_idempotency_key("POST", "/clients/merge", "abc", actor="Bearer b")

    assert key1 != key2


@pytest.mark.asyncio
async def test_disabled_redis_is_a_no_op():
    """Without Redis nothing is cached and writes report success."""
    assert redis_client.enabled is False
    assert await redis_client.set_json("idempotency:test_key", {"body": {}}, ttl=60) is True
    assert await redis_client.get_json("idempotency:test_key") is None


@pytest.mark.asyncio
async def test_cached_response_replayed(http_client, db_session, organization_id, merge_actor_id):
    """A cached success is returned without running the merge again."""
    p = await create_client(db_session, organization_id)
    s1 = await create_client(db_session, organization_id)
    cached = {
        "body": {"success": True, "mergeLogId": 41, "reparentingCounts": {}},
        "status_code": 200,
    }

    with patch.object(type(redis_client), "enabled", property(lambda self: True)), \
            patch.object(redis_client, "get_json", AsyncMock(return_value=cached)) as get_json:
        response = await http_client.post(
            MERGE_URL,
            json={"primaryClientId": p, "secondaryClientIds": [s1], "organizationId": organization_id},
            headers={**auth_headers(merge_actor_id), "Idempotency-Key": "merge-1"},
        )

    assert response.status_code == 200
    assert response.json()["mergeLogId"] == 41
    get_json.assert_awaited_once()
    assert (await reload_client(db_session, s1)).status == ClientStatus.ACTIVE.value


@pytest.mark.asyncio
async def test_retry_with_same_key_returns_first_result(
    http_client, db_session, organization_id, merge_actor_id, redis_store
):
    p = await create_client(db_session, organization_id)
    s1 = await create_client(db_session, organization_id)
    request = {
        "json": {"primaryClientId": p, "secondaryClientIds": [s1], "organizationId": organization_id},
        "headers": {**auth_headers(merge_actor_id), "Idempotency-Key": "merge-p-s1"},
    }

    first = await http_client.post(MERGE_URL, **request)
    retry = await http_client.post(MERGE_URL, **request)

    assert first.status_code == retry.status_code == 200
    assert retry.json() == first.json()
    assert len(redis_store) == 1


@pytest.mark.asyncio
async def test_merge_sent_again_after_undo_runs_again(
    http_client, db_session, organization_id, merge_actor_id, redis_store
):
    """Without an Idempotency-Key an identical request is a new merge, not a cached replay."""
    org = organization_id
    headers = auth_headers(merge_actor_id)
    p = await create_client(db_session, org)
    s1 = await create_client(db_session, org)
    body = {"primaryClientId": p, "secondaryClientIds": [s1], "organizationId": org}

    first = await http_client.post(MERGE_URL, json=body, headers=headers)
    undone = await http_client.post(
        f"/api/v1/clients/merge-logs/{first.json()['mergeLogId']}/undo",
        params={"organizationId": org},
        headers=headers,
    )
    assert undone.status_code == 200
    assert (await reload_client(db_session, s1)).status == ClientStatus.ACTIVE.value

    again = await http_client.post(MERGE_URL, json=body, headers=headers)

    assert again.status_code == 200
    assert again.json()["mergeLogId"] != first.json()["mergeLogId"]
    merged = await reload_client(db_session, s1)
    assert merged.status == ClientStatus.MERGED.value
    assert merged.merged_into_client_id == p
    assert redis_store == {}
