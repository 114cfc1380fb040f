"""
Unit tests for Redis client wrapper.

Tests incident store operations using fakeredis for isolated testing.
"""

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Callable

import pytest

from incident_intake.models.error_report import ErrorType, Severity
from incident_intake.models.incident import Incident, IncidentStatus
from incident_intake.services.redis_client import (
    IncidentConflictError,
    IncidentNotFoundError,
    RedisClient,
    deserialize_incident,
    serialize_incident,
)


@pytest.fixture
def make_incident() -> Callable[..., Incident]:
    """Create sample incidents for testing."""
    def _build(**overrides: Any) -> Incident:
        now = datetime.now(timezone.utc)
        fields = {
            "id": str(uuid.uuid4()),
            "organization_id": "t1",
            "fingerprint": "f" * 32,
            "error_type": ErrorType.UNHANDLED_EXCEPTION,
            "severity": Severity.HIGH,
            "message": "TypeError: x is undefined",
            "url": "https://shop.example.com/checkout",
            "user_agent": "Mozilla/5.0",
            "assistant_id": "assistant_1",
            "session_id": "session_1",
            "metadata": {"browser_info": {"name": "Chrome"}},
            "first_seen": now,
            "last_seen": now,
            "updated_at": now,
        }
        fields.update(overrides)
        return Incident(**fields)

    return _build


class TestSerialization:

    def test_round_trip_keeps_nested_fields(self, make_incident):
        incident = make_incident(context={"route": "/checkout"}, line_number=42)

        fields = serialize_incident(incident)

        assert fields["line_number"] == "42"
        assert "stack_trace" not in fields
        restored = deserialize_incident(fields)
        assert restored.context == {"route": "/checkout"}
        assert restored.metadata == incident.metadata
        assert restored.line_number == 42


class TestUpsertOpenIncident:
    """Atomic insert-or-increment."""

    @pytest.mark.asyncio
    async def test_first_report_creates_incident(self, redis_client: RedisClient, make_incident):
        incident = make_incident()

        stored = await redis_client.upsert_open_incident(incident)

        assert stored == {
            "created": True,
            "id": incident.id,
            "status": IncidentStatus.NEW,
            "severity": Severity.HIGH,
            "occurrence_count": 1,
        }
        persisted = await redis_client.get_incident(incident.id)
        assert persisted.fingerprint == incident.fingerprint
        assert persisted.metadata == {"browser_info": {"name": "Chrome"}}

    @pytest.mark.asyncio
    async def test_same_fingerprint_increments_open_incident(
        self, redis_client: RedisClient, make_incident
    ):
        first = make_incident()
        await redis_client.upsert_open_incident(first)

        second = await redis_client.upsert_open_incident(make_incident(severity=Severity.LOW))

        assert second["created"] is False
        assert second["id"] == first.id
        assert second["occurrence_count"] == 2
        # The existing incident keeps its severity
        assert second["severity"] == Severity.HIGH

    @pytest.mark.asyncio
    async def test_fingerprints_are_scoped_per_tenant(self, redis_client: RedisClient, make_incident):
        first = await redis_client.upsert_open_incident(make_incident(organization_id="t1"))
        second = await redis_client.upsert_open_incident(make_incident(organization_id="t2"))

        assert first["created"] and second["created"]
        assert first["id"] != second["id"]

    @pytest.mark.asyncio
    async def test_duplicate_keeps_status(self, redis_client: RedisClient, make_incident):
        incident = make_incident()
        await redis_client.upsert_open_incident(incident)
        await redis_client.transition_status(incident.id, IncidentStatus.CARLA_FIXING)

        stored = await redis_client.upsert_open_incident(make_incident())

        assert stored["status"] == IncidentStatus.CARLA_FIXING
        assert stored["occurrence_count"] == 2

    @pytest.mark.asyncio
    async def test_stale_open_index_opens_new_incident(self, redis_client: RedisClient, make_incident):
        incident = make_incident()
        await redis_client.upsert_open_incident(incident)
        await redis_client._client.delete(f"incident:{incident.id}")

        replacement = make_incident()
        stored = await redis_client.upsert_open_incident(replacement)

        assert stored["created"] is True
        assert stored["id"] == replacement.id


class TestOpenIncidentLookup:

    @pytest.mark.asyncio
    async def test_find_open_incident_ids(self, redis_client: RedisClient, make_incident):
        incident = make_incident()
        await redis_client.upsert_open_incident(incident)

        found = await redis_client.find_open_incident_ids([
            ("t1", incident.fingerprint),
            ("t1", "unknown"),
            ("t1", incident.fingerprint),
        ])

        assert found == {("t1", incident.fingerprint): incident.id}

    @pytest.mark.asyncio
    async def test_empty_lookup(self, redis_client: RedisClient):
        assert await redis_client.find_open_incident_ids([]) == {}

    @pytest.mark.asyncio
    async def test_record_occurrence(self, redis_client: RedisClient, make_incident):
        incident = make_incident()
        await redis_client.upsert_open_incident(incident)

        occurrence = await redis_client.record_occurrence(incident.id)

        assert occurrence == {
            "status": IncidentStatus.NEW,
            "severity": Severity.HIGH,
            "occurrence_count": 2,
        }

    @pytest.mark.asyncio
    async def test_record_occurrence_on_resolved_incident(
        self, redis_client: RedisClient, make_incident
    ):
        incident = make_incident()
        await redis_client.upsert_open_incident(incident)
        await redis_client.resolve_incident(incident.id)

        assert await redis_client.record_occurrence(incident.id) is None
        assert await redis_client.record_occurrence("missing") is None


class TestTransitions:
    """Compare-and-set status transitions."""

    @pytest.mark.asyncio
    async def test_transition_applies_when_allowed(self, redis_client: RedisClient, make_incident):
        incident = make_incident()
        await redis_client.upsert_open_incident(incident)

        applied, status = await redis_client.transition_status(
            incident.id,
            IncidentStatus.CARLA_FIXING,
            allowed_from=[IncidentStatus.NEW],
            fields={"remediation": {"attempted_at": "2024-01-15T10:30:00+00:00"}},
        )

        assert applied is True
        assert status == IncidentStatus.CARLA_FIXING
        stored = await redis_client.get_incident(incident.id)
        assert stored.status == IncidentStatus.CARLA_FIXING
        assert stored.remediation.attempted_at is not None

    @pytest.mark.asyncio
    async def test_transition_rejected_returns_current_status(
        self, redis_client: RedisClient, make_incident
    ):
        incident = make_incident()
        await redis_client.upsert_open_incident(incident)
        await redis_client.transition_status(incident.id, IncidentStatus.CARLA_FIXING)

        applied, status = await redis_client.transition_status(
            incident.id,
            IncidentStatus.CARLA_FIXING,
            allowed_from=[IncidentStatus.NEW],
        )

        assert applied is False
        assert status == IncidentStatus.CARLA_FIXING

    @pytest.mark.asyncio
    async def test_transition_unknown_incident(self, redis_client: RedisClient):
        with pytest.raises(IncidentNotFoundError):
            await redis_client.transition_status("missing", IncidentStatus.RESOLVED)

    @pytest.mark.asyncio
    async def test_resolve_releases_open_slot(self, redis_client: RedisClient, make_incident):
        incident = make_incident()
        await redis_client.upsert_open_incident(incident)

        resolved = await redis_client.resolve_incident(
            incident.id, resolved_by="ops", resolution_notes="fixed in 1.2"
        )

        assert resolved.status == IncidentStatus.RESOLVED
        assert resolved.resolved_by == "ops"
        assert resolved.resolved_at is not None

        reopened = await redis_client.upsert_open_incident(make_incident())
        assert reopened["created"] is True
        assert reopened["id"] != incident.id

    @pytest.mark.asyncio
    async def test_ignore_keeps_open_slot(self, redis_client: RedisClient, make_incident):
        incident = make_incident()
        await redis_client.upsert_open_incident(incident)

        await redis_client.resolve_incident(incident.id, status=IncidentStatus.IGNORED)
        stored = await redis_client.upsert_open_incident(make_incident())

        assert stored["created"] is False
        assert stored["status"] == IncidentStatus.IGNORED

    @pytest.mark.asyncio
    async def test_resolved_incident_never_reopens(self, redis_client: RedisClient, make_incident):
        first = make_incident()
        await redis_client.upsert_open_incident(first)
        await redis_client.resolve_incident(first.id)
        second = make_incident()
        await redis_client.upsert_open_incident(second)

        applied, status = await redis_client.transition_status(first.id, IncidentStatus.FIX_FAILED)

        assert applied is False
        assert status == IncidentStatus.RESOLVED
        stored = await redis_client.get_incident(first.id)
        assert stored.status == IncidentStatus.RESOLVED
        found = await redis_client.find_open_incident_ids([("t1", first.fingerprint)])
        assert found == {("t1", first.fingerprint): second.id}

    @pytest.mark.asyncio
    async def test_resolve_twice_conflicts(self, redis_client: RedisClient, make_incident):
        incident = make_incident()
        await redis_client.upsert_open_incident(incident)
        await redis_client.resolve_incident(incident.id, resolved_by="ops")

        with pytest.raises(IncidentConflictError) as exc_info:
            await redis_client.resolve_incident(incident.id, status=IncidentStatus.IGNORED)

        assert exc_info.value.status == IncidentStatus.RESOLVED
        stored = await redis_client.get_incident(incident.id)
        assert stored.status == IncidentStatus.RESOLVED
        assert stored.resolved_by == "ops"


class TestMergeRemediation:
    """Status transitions that merge into the remediation record."""

    @pytest.mark.asyncio
    async def test_merge_keeps_existing_keys(self, redis_client: RedisClient, make_incident):
        incident = make_incident()
        await redis_client.upsert_open_incident(incident)
        await redis_client.merge_remediation(
            incident.id,
            IncidentStatus.FIX_FAILED,
            [IncidentStatus.NEW],
            {"error_message": "no reproduction", "attempted_at": "2024-01-15T10:30:00+00:00"},
        )

        applied, status = await redis_client.merge_remediation(
            incident.id,
            IncidentStatus.CARLA_FIXING,
            [IncidentStatus.FIX_FAILED],
            {"attempted_at": "2024-01-16T08:00:00+00:00"},
        )

        assert applied is True
        assert status == IncidentStatus.CARLA_FIXING
        stored = await redis_client.get_incident(incident.id)
        assert stored.remediation.error_message == "no reproduction"
        assert stored.remediation.attempted_at == datetime(2024, 1, 16, 8, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_merge_rejected_leaves_record(self, redis_client: RedisClient, make_incident):
        incident = make_incident()
        await redis_client.upsert_open_incident(incident)

        applied, status = await redis_client.merge_remediation(
            incident.id,
            IncidentStatus.NEW,
            [IncidentStatus.CARLA_FIXING],
            {"error_message": "timed out"},
        )

        assert applied is False
        assert status == IncidentStatus.NEW
        stored = await redis_client.get_incident(incident.id)
        assert stored.remediation is None

    @pytest.mark.asyncio
    async def test_stale_record_is_not_overwritten(self, redis_client: RedisClient, make_incident):
        incident = make_incident()
        await redis_client.upsert_open_incident(incident)

        code, status = await redis_client._transition(
            incident.id,
            IncidentStatus.CARLA_FIXING,
            [IncidentStatus.NEW],
            {"remediation": {"attempted_at": "2024-01-15T10:30:00+00:00"}},
            expected={"remediation": json.dumps({"pr_url": "https://github.com/acme/shop/pull/1"})},
        )

        assert code == 2
        assert status == IncidentStatus.NEW
        stored = await redis_client.get_incident(incident.id)
        assert stored.status == IncidentStatus.NEW
        assert stored.remediation is None

    @pytest.mark.asyncio
    async def test_concurrent_write_is_merged(self, redis_client: RedisClient, make_incident):
        incident = make_incident()
        await redis_client.upsert_open_incident(incident)
        await redis_client.transition_status(incident.id, IncidentStatus.CARLA_FIXING)
        real_transition = redis_client._transition
        calls = []

        async def racing_transition(*args, **kwargs):
            if not calls:
                # Another writer lands between the read and the write
                await redis_client._client.hset(
                    f"incident:{incident.id}",
                    "remediation",
                    json.dumps({"error_message": "Timed out after 10.0s"}),
                )
            calls.append(args)
            return await real_transition(*args, **kwargs)

        redis_client._transition = racing_transition
        applied, _ = await redis_client.merge_remediation(
            incident.id,
            IncidentStatus.PR_CREATED,
            [IncidentStatus.CARLA_FIXING],
            {"pr_url": "https://github.com/acme/shop/pull/7"},
        )

        assert applied is True
        assert len(calls) == 2
        stored = await redis_client.get_incident(incident.id)
        assert stored.remediation.pr_url == "https://github.com/acme/shop/pull/7"
        assert stored.remediation.error_message == "Timed out after 10.0s"

    @pytest.mark.asyncio
    async def test_merge_unknown_incident(self, redis_client: RedisClient):
        with pytest.raises(IncidentNotFoundError):
            await redis_client.merge_remediation(
                "missing", IncidentStatus.CARLA_FIXING, [IncidentStatus.NEW], {}
            )


class TestDeleteIncidentGroup:

    @pytest.mark.asyncio
    async def test_deletes_every_incident_of_fingerprint(
        self, redis_client: RedisClient, make_incident
    ):
        first = make_incident()
        await redis_client.upsert_open_incident(first)
        await redis_client.resolve_incident(first.id)
        second = make_incident()
        await redis_client.upsert_open_incident(second)
        other = make_incident(fingerprint="e" * 32)
        await redis_client.upsert_open_incident(other)

        deleted = await redis_client.delete_incident_group(first.id)

        assert deleted == 2
        assert await redis_client.get_incident(first.id) is None
        assert await redis_client.get_incident(second.id) is None
        assert await redis_client.get_incident(other.id) is not None
        assert await redis_client.find_open_incident_ids([("t1", first.fingerprint)]) == {}

    @pytest.mark.asyncio
    async def test_unknown_incident_deletes_nothing(self, redis_client: RedisClient):
        assert await redis_client.delete_incident_group("missing") == 0


class TestErrorHandling:

    @pytest.mark.asyncio
    async def test_uninitialized_client_raises(self):
        client = RedisClient(redis_url="redis://localhost:6379/0")

        with pytest.raises(RuntimeError, match="not initialized"):
            await client.get_incident("any")

    @pytest.mark.asyncio
    async def test_ping(self, redis_client: RedisClient):
        assert await redis_client.ping() is True
