"""
Redis client wrapper for the incident store.

This service provides Redis operations for:
- Incident records stored as hashes (``incident:{id}``)
- The open-incident index keyed by tenant and fingerprint
  (``incident:open:{org}:{fingerprint}``)
- Fingerprint groups holding every incident ever created for a fingerprint
  (``incident:group:{org}:{fingerprint}``)

Every read-modify-write runs as a Lua script so concurrent reports for the
same fingerprint converge on one incident. Includes connection pooling and
retry logic for resilience.
"""

import json
import logging
import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple
from contextlib import asynccontextmanager
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import RedisError, ConnectionError, TimeoutError

from incident_intake.models.error_report import Severity
from incident_intake.models.incident import Incident, IncidentStatus, UNRESOLVED_STATUSES


logger = logging.getLogger(__name__)


class IncidentStoreError(Exception):
    """Raised when an incident store operation fails."""
    pass


class RedisConnectionError(IncidentStoreError):
    """Raised when Redis connection fails after retries."""
    pass


class IncidentNotFoundError(IncidentStoreError):
    """Raised when an incident does not exist."""
    pass


class IncidentConflictError(IncidentStoreError):
    """Raised when an incident's current status forbids the requested change."""

    def __init__(self, message: str, status: Optional[IncidentStatus] = None):
        super().__init__(message)
        self.status = status


# Incident fields holding nested structures, stored as JSON strings
JSON_FIELDS = ("metadata", "performance_data", "context", "remediation")


_UPSERT_OPEN_INCIDENT = """
local existing = redis.call('GET', KEYS[1])
if existing then
  local existing_key = ARGV[3] .. existing
  if redis.call('EXISTS', existing_key) == 1 then
    local count = redis.call('HINCRBY', existing_key, 'occurrence_count', 1)
    redis.call('HSET', existing_key, 'last_seen', ARGV[2], 'updated_at', ARGV[2])
    local fields = redis.call('HMGET', existing_key, 'status', 'severity')
    return {0, existing, fields[1], fields[2], count}
  end
end
local incident_key = ARGV[3] .. ARGV[1]
for i = 4, #ARGV, 2 do
  redis.call('HSET', incident_key, ARGV[i], ARGV[i + 1])
end
redis.call('SET', KEYS[1], ARGV[1])
redis.call('SADD', KEYS[2], ARGV[1])
local fields = redis.call('HMGET', incident_key, 'status', 'severity')
return {1, ARGV[1], fields[1], fields[2], 1}
"""

_RECORD_OCCURRENCE = """
local status = redis.call('HGET', KEYS[1], 'status')
if (not status) or status == 'resolved' then
  return false
end
local count = redis.call('HINCRBY', KEYS[1], 'occurrence_count', 1)
redis.call('HSET', KEYS[1], 'last_seen', ARGV[1], 'updated_at', ARGV[1])
return {status, redis.call('HGET', KEYS[1], 'severity'), count}
"""

# ARGV: new status, now, open key prefix, allowed count, allowed...,
# expected count, expected field/value pairs, field/value pairs
_TRANSITION_STATUS = """
local current = redis.call('HGET', KEYS[1], 'status')
if not current then
  return {-1, ''}
end
if current == 'resolved' then
  return {0, current}
end
local n = tonumber(ARGV[4])
local allowed = (n == 0)
for i = 5, 4 + n do
  if ARGV[i] == current then
    allowed = true
  end
end
if not allowed then
  return {0, current}
end
local e = 5 + n
local m = tonumber(ARGV[e])
for i = e + 1, e + 2 * m, 2 do
  local value = redis.call('HGET', KEYS[1], ARGV[i]) or ''
  if value ~= ARGV[i + 1] then
    return {2, current}
  end
end
redis.call('HSET', KEYS[1], 'status', ARGV[1], 'updated_at', ARGV[2])
for i = e + 1 + 2 * m, #ARGV, 2 do
  redis.call('HSET', KEYS[1], ARGV[i], ARGV[i + 1])
end
if ARGV[1] == 'resolved' then
  local fields = redis.call('HMGET', KEYS[1], 'organization_id', 'fingerprint', 'id')
  local open_key = ARGV[3] .. fields[1] .. ':' .. fields[2]
  if redis.call('GET', open_key) == fields[3] then
    redis.call('DEL', open_key)
  end
end
return {1, ARGV[1]}
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def serialize_incident(incident: Incident) -> Dict[str, str]:
    """
    Flatten an incident into hash fields.

    None values are omitted; nested structures are stored as JSON.
    """
    fields = {}
    for name, value in incident.model_dump(mode="json").items():
        if value is None:
            continue
        if name in JSON_FIELDS:
            fields[name] = json.dumps(value)
        else:
            fields[name] = str(value)
    return fields


def deserialize_incident(data: Dict[str, str]) -> Incident:
    """Rebuild an incident from its hash fields."""
    parsed: Dict[str, Any] = dict(data)
    for name in JSON_FIELDS:
        if name in parsed:
            parsed[name] = json.loads(parsed[name])
    return Incident.model_validate(parsed)


class RedisClient:
    """
    Redis client wrapper with connection pooling and retry logic.

    Provides methods for:
    - Atomic insert-or-increment of open incidents
    - Bulk open-incident lookup for batches
    - Compare-and-set status transitions
    - Fingerprint group deletion
    """

    INCIDENT_PREFIX = "incident:"
    INCIDENT_KEY = "incident:{incident_id}"
    OPEN_INDEX_PREFIX = "incident:open:"
    OPEN_INDEX_KEY = "incident:open:{organization_id}:{fingerprint}"
    GROUP_KEY = "incident:group:{organization_id}:{fingerprint}"
    MAX_MERGE_ATTEMPTS = 5

    def __init__(
        self,
        redis_url: Optional[str] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        connection_timeout: int = 5
    ):
        """
        Initialize Redis client.

        Args:
            redis_url: Redis connection URL. If None, will load from settings.
            max_retries: Maximum number of attempts for transient errors
            retry_delay: Base delay between retries (exponential backoff)
            connection_timeout: Connection timeout in seconds
        """
        self._redis_url = redis_url
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[redis.Redis] = None
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._connection_timeout = connection_timeout

    async def initialize(self) -> None:
        """
        Initialize Redis connection pool.

        Should be called during application startup.

        Raises:
            RedisConnectionError: If connection fails
        """
        try:
            if not self._redis_url:
                from incident_intake.config import settings
                self._redis_url = settings.redis_url

            self._pool = ConnectionPool.from_url(
                self._redis_url,
                max_connections=20,
                decode_responses=True,
                socket_timeout=self._connection_timeout,
                socket_connect_timeout=self._connection_timeout
            )
            self._client = redis.Redis(connection_pool=self._pool)

            await self._client.ping()

            logger.info("Redis connection pool initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize Redis connection pool: {e}")
            raise RedisConnectionError(f"Failed to connect to Redis: {e}") from e

    async def close(self) -> None:
        """
        Close Redis connection pool.

        Should be called during application shutdown.
        """
        if self._client:
            await self._client.aclose()

        if self._pool:
            await self._pool.disconnect()

        logger.info("Redis connection pool closed")

    @asynccontextmanager
    async def _get_client(self):
        """
        Get Redis client with connection check.

        Yields:
            redis.Redis: Redis client instance

        Raises:
            RuntimeError: If client not initialized
        """
        if not self._client:
            raise RuntimeError("Redis client not initialized. Call initialize() first.")

        yield self._client

    async def _retry_operation(self, operation, *args, **kwargs):
        """
        Execute Redis operation with retry logic.

        Args:
            operation: Async function to execute
            *args: Positional arguments for operation
            **kwargs: Keyword arguments for operation

        Returns:
            Operation result

        Raises:
            RedisConnectionError: If operation fails after all retries
            IncidentStoreError: On non-transient Redis errors
        """
        last_error = None

        for attempt in range(self._max_retries):
            try:
                return await operation(*args, **kwargs)

            except (ConnectionError, TimeoutError) as e:
                last_error = e
                if attempt < self._max_retries - 1:
                    delay = self._retry_delay * (2 ** attempt)
                    logger.warning(
                        f"Redis operation failed (attempt {attempt + 1}/{self._max_retries}), "
                        f"retrying in {delay}s: {e}"
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.error(f"Redis operation failed after {self._max_retries} attempts: {e}")

            except RedisError as e:
                # Non-transient errors, don't retry
                logger.error(f"Redis operation failed with non-transient error: {e}")
                raise IncidentStoreError(f"Redis operation failed: {e}") from e

        raise RedisConnectionError(f"Redis operation failed after {self._max_retries} retries: {last_error}")

    async def _run_script(self, client: redis.Redis, source: str, keys: List[str], args: List[Any]):
        script = client.register_script(source)
        return await script(keys=keys, args=args)

    # ========== Key Helpers ==========

    def _incident_key(self, incident_id: str) -> str:
        return self.INCIDENT_KEY.format(incident_id=incident_id)

    def _open_key(self, organization_id: str, fingerprint: str) -> str:
        return self.OPEN_INDEX_KEY.format(organization_id=organization_id, fingerprint=fingerprint)

    def _group_key(self, organization_id: str, fingerprint: str) -> str:
        return self.GROUP_KEY.format(organization_id=organization_id, fingerprint=fingerprint)

    # ========== Ingestion Operations ==========

    async def upsert_open_incident(self, incident: Incident) -> Dict[str, Any]:
        """
        Insert the incident unless an open one exists for its fingerprint.

        When an open incident exists its occurrence count is incremented and
        last_seen refreshed; its status is left untouched.

        Args:
            incident: Fully prepared new incident

        Returns:
            Dictionary with created, id, status, severity and occurrence_count

        Raises:
            IncidentStoreError: If the operation fails
        """
        fields = serialize_incident(incident)
        args: List[Any] = [incident.id, _now(), self.INCIDENT_PREFIX]
        for name, value in fields.items():
            args.extend((name, value))

        async def _upsert():
            async with self._get_client() as client:
                return await self._run_script(
                    client,
                    _UPSERT_OPEN_INCIDENT,
                    keys=[
                        self._open_key(incident.organization_id, incident.fingerprint),
                        self._group_key(incident.organization_id, incident.fingerprint),
                    ],
                    args=args,
                )

        created, incident_id, status, severity, count = await self._retry_operation(_upsert)
        created = int(created) == 1

        logger.debug(
            f"{'Created' if created else 'Incremented'} incident {incident_id}",
            extra={"incident_id": incident_id, "fingerprint": incident.fingerprint},
        )

        return {
            "created": created,
            "id": incident_id,
            "status": IncidentStatus(status),
            "severity": Severity(severity),
            "occurrence_count": int(count),
        }

    async def find_open_incident_ids(
        self,
        pairs: Iterable[Tuple[str, str]],
    ) -> Dict[Tuple[str, str], str]:
        """
        Bulk lookup of open incidents.

        Args:
            pairs: (organization_id, fingerprint) pairs

        Returns:
            Mapping of (organization_id, fingerprint) to open incident ID,
            containing only the pairs that have an open incident
        """
        unique_pairs = list(dict.fromkeys(pairs))
        if not unique_pairs:
            return {}

        async def _lookup():
            async with self._get_client() as client:
                keys = [self._open_key(org, fp) for org, fp in unique_pairs]
                return await client.mget(keys)

        ids = await self._retry_operation(_lookup)
        return {pair: incident_id for pair, incident_id in zip(unique_pairs, ids) if incident_id}

    async def record_occurrence(self, incident_id: str) -> Optional[Dict[str, Any]]:
        """
        Atomically count one more occurrence of an open incident.

        Args:
            incident_id: Incident ID

        Returns:
            Dictionary with status, severity and occurrence_count, or None if
            the incident no longer exists or has been resolved
        """
        async def _record():
            async with self._get_client() as client:
                return await self._run_script(
                    client,
                    _RECORD_OCCURRENCE,
                    keys=[self._incident_key(incident_id)],
                    args=[_now()],
                )

        result = await self._retry_operation(_record)
        if not result:
            return None

        status, severity, count = result
        return {
            "status": IncidentStatus(status),
            "severity": Severity(severity),
            "occurrence_count": int(count),
        }

    # ========== Lifecycle Operations ==========

    def _encode_fields(self, fields: Optional[Dict[str, Any]]) -> List[str]:
        args: List[str] = []
        for name, value in (fields or {}).items():
            if value is None:
                continue
            if name in JSON_FIELDS:
                value = json.dumps(value, default=str)
            elif isinstance(value, datetime):
                value = value.isoformat()
            args.extend((name, str(value)))
        return args

    async def _transition(
        self,
        incident_id: str,
        new_status: IncidentStatus,
        allowed_from: Optional[Iterable[IncidentStatus]],
        fields: Optional[Dict[str, Any]],
        expected: Optional[Dict[str, Optional[str]]] = None,
    ) -> Tuple[int, IncidentStatus]:
        allowed = [IncidentStatus(status).value for status in (allowed_from or ())]
        args: List[Any] = [
            IncidentStatus(new_status).value,
            _now(),
            self.OPEN_INDEX_PREFIX,
            len(allowed),
            *allowed,
            len(expected or {}),
        ]
        for name, value in (expected or {}).items():
            args.extend((name, value or ""))
        args.extend(self._encode_fields(fields))

        async def _run():
            async with self._get_client() as client:
                return await self._run_script(
                    client,
                    _TRANSITION_STATUS,
                    keys=[self._incident_key(incident_id)],
                    args=args,
                )

        code, status = await self._retry_operation(_run)
        code = int(code)

        if code == -1:
            raise IncidentNotFoundError(f"Incident {incident_id} not found")
        if code == 1:
            logger.info(
                f"Incident {incident_id} transitioned to {new_status.value}",
                extra={"incident_id": incident_id, "status": new_status.value},
            )
        return code, IncidentStatus(status)

    async def transition_status(
        self,
        incident_id: str,
        new_status: IncidentStatus,
        allowed_from: Optional[Iterable[IncidentStatus]] = None,
        fields: Optional[Dict[str, Any]] = None,
    ) -> Tuple[bool, Optional[IncidentStatus]]:
        """
        Compare-and-set an incident's status.

        A resolved incident never transitions again.

        Args:
            incident_id: Incident ID
            new_status: Target status
            allowed_from: Statuses the incident must currently be in; any
                unresolved status is accepted when None
            fields: Extra fields written with the transition (None values skipped)

        Returns:
            Tuple of (applied, status). On success status is the new status,
            otherwise the current status that blocked the transition.

        Raises:
            IncidentNotFoundError: If the incident does not exist
        """
        code, status = await self._transition(incident_id, new_status, allowed_from, fields)
        return code == 1, status

    async def merge_remediation(
        self,
        incident_id: str,
        new_status: IncidentStatus,
        allowed_from: Iterable[IncidentStatus],
        remediation: Dict[str, Any],
        fields: Optional[Dict[str, Any]] = None,
    ) -> Tuple[bool, Optional[IncidentStatus]]:
        """
        Transition an incident and merge keys into its remediation record.

        Keys already on the record and absent from ``remediation`` are kept.
        The write only lands if the record is unchanged since it was read;
        otherwise the merge is recomputed.

        Args:
            incident_id: Incident ID
            new_status: Target status
            allowed_from: Statuses the incident must currently be in
            remediation: Keys to set on the remediation record
            fields: Extra fields written with the transition

        Returns:
            Tuple of (applied, status), as for ``transition_status``

        Raises:
            IncidentNotFoundError: If the incident does not exist
            IncidentStoreError: If the record keeps changing underneath
        """
        allowed_from = list(allowed_from)
        key = self._incident_key(incident_id)

        async def _read():
            async with self._get_client() as client:
                return await client.hget(key, "remediation")

        for _ in range(self.MAX_MERGE_ATTEMPTS):
            raw = await self._retry_operation(_read)
            merged = json.loads(raw) if raw else {}
            merged.update({k: v for k, v in remediation.items() if v is not None})

            code, status = await self._transition(
                incident_id,
                new_status,
                allowed_from,
                {**(fields or {}), "remediation": merged},
                expected={"remediation": raw},
            )
            if code != 2:
                return code == 1, status

            logger.debug(f"Remediation record of {incident_id} changed during merge, retrying")

        raise IncidentStoreError(
            f"Remediation record of {incident_id} changed on every attempt"
        )

    async def get_incident(self, incident_id: str) -> Optional[Incident]:
        """
        Retrieve an incident.

        Args:
            incident_id: Incident ID

        Returns:
            Incident if found, None otherwise
        """
        async def _get():
            async with self._get_client() as client:
                return await client.hgetall(self._incident_key(incident_id))

        data = await self._retry_operation(_get)
        if not data:
            return None
        return deserialize_incident(data)

    async def resolve_incident(
        self,
        incident_id: str,
        status: IncidentStatus = IncidentStatus.RESOLVED,
        resolved_by: Optional[str] = None,
        resolution_notes: Optional[str] = None,
    ) -> Incident:
        """
        Close an incident on behalf of an operator.

        Resolving releases the open slot, so the next report for the same
        fingerprint opens a new incident. A resolved incident cannot be
        closed again.

        Raises:
            IncidentNotFoundError: If the incident does not exist
            IncidentConflictError: If the incident is already resolved
        """
        applied, current = await self.transition_status(
            incident_id,
            status,
            allowed_from=UNRESOLVED_STATUSES,
            fields={
                "resolved_at": _now(),
                "resolved_by": resolved_by,
                "resolution_notes": resolution_notes,
            },
        )
        if not applied:
            raise IncidentConflictError(
                f"Incident {incident_id} is {current.value} and cannot be closed",
                status=current,
            )
        incident = await self.get_incident(incident_id)
        if incident is None:
            raise IncidentNotFoundError(f"Incident {incident_id} not found")
        return incident

    async def delete_incident_group(self, incident_id: str) -> int:
        """
        Delete every incident sharing the fingerprint of the given incident.

        Args:
            incident_id: Any incident of the group

        Returns:
            Number of incident records deleted (0 if the incident is unknown)
        """
        async def _delete():
            async with self._get_client() as client:
                org, fingerprint = await client.hmget(
                    self._incident_key(incident_id), "organization_id", "fingerprint"
                )
                if org is None or fingerprint is None:
                    return 0

                group_key = self._group_key(org, fingerprint)
                member_ids = set(await client.smembers(group_key))
                member_ids.add(incident_id)

                async with client.pipeline(transaction=True) as pipe:
                    for member_id in member_ids:
                        pipe.delete(self._incident_key(member_id))
                    pipe.delete(group_key, self._open_key(org, fingerprint))
                    results = await pipe.execute()

                return sum(int(deleted) for deleted in results[:-1])

        deleted = await self._retry_operation(_delete)
        if deleted:
            logger.info(
                f"Deleted {deleted} incidents in group of {incident_id}",
                extra={"incident_id": incident_id, "deleted_count": deleted},
            )
        return deleted

    # ========== Utility Methods ==========

    async def ping(self) -> bool:
        """
        Test Redis connection.

        Returns:
            True if connection is healthy

        Raises:
            RedisConnectionError: If ping fails
        """
        async def _ping():
            async with self._get_client() as client:
                return await client.ping()

        return await self._retry_operation(_ping)

    async def clear_all_data(self) -> None:
        """
        Clear all data (for testing purposes only).

        WARNING: This will delete all keys in the Redis database.
        """
        async def _clear():
            async with self._get_client() as client:
                await client.flushdb()
                logger.warning("Cleared all Redis data")

        await self._retry_operation(_clear)


def get_redis_client() -> RedisClient:
    """
    Create a Redis client instance.

    Returns:
        RedisClient instance
    """
    return RedisClient()
