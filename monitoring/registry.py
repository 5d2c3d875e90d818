"""
============================================================================
FLEET WATCHDOG - CLIENT REGISTRY
============================================================================
Authoritative mapping of client id → ClientRecord for the lifetime of
the process. Rebuilt wholesale by every registry refresh.

Records are immutable. Every change goes through
``update(client_id, mutator)``, which reads the *current* record,
applies the mutator's changes, and writes back a copy. Nothing here
awaits, so an update and a refresh can never interleave.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from exceptions.registry import InvalidClientRecordError, UnknownClientError
from utils.logger import get_logger


logger = get_logger("ClientRegistry")

# Timestamps above this are milliseconds since the epoch
_MILLISECOND_THRESHOLD = 1e11


# ============================================================================
# CLIENT RECORD
# ============================================================================

class ClientRecord(BaseModel):
    """
    One monitored client.

    Upstream registries use camelCase names (``clientId``, ``repl``,
    ``deployKey``, ``downTime``, ``lastPingTime``); both those and the
    field names are accepted. Unknown descriptive fields are kept as-is.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="allow",
        populate_by_name=True,
    )

    client_id: str = Field(alias="clientId", min_length=1)
    endpoint: str = Field(alias="repl", min_length=1)
    deploy_key: Optional[str] = Field(default=None, alias="deployKey")
    downtime_counter: int = Field(default=0, alias="downTime")
    last_seen_at: Optional[float] = Field(default=None, alias="lastPingTime")

    @field_validator("client_id", "endpoint", mode="before")
    @classmethod
    def strip_text(cls, v: Any) -> Any:
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v.strip() if isinstance(v, str) else v

    @field_validator("deploy_key", mode="before")
    @classmethod
    def blank_key_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("last_seen_at", mode="before")
    @classmethod
    def normalize_timestamp(cls, v: Any) -> Any:
        """Accept epoch seconds or milliseconds."""
        if isinstance(v, (int, float)) and not isinstance(v, bool) and v > _MILLISECOND_THRESHOLD:
            return v / 1000.0
        return v

    def staleness(self, now: float) -> Optional[float]:
        """Seconds since the client was last seen, None if never."""
        if self.last_seen_at is None:
            return None
        return max(0.0, now - self.last_seen_at)

    def to_public(self) -> Dict[str, Any]:
        """JSON form returned by the inbound API (upstream key names)."""
        return self.model_dump(mode="json", by_alias=True)


ClientPayload = Union[ClientRecord, Mapping[str, Any]]
Mutator = Callable[[ClientRecord], Optional[Mapping[str, Any]]]


# ============================================================================
# REGISTRY
# ============================================================================

class ClientRegistry:
    """In-memory registry keeping insertion order of the last refresh."""

    def __init__(self) -> None:
        self._records: Dict[str, ClientRecord] = {}
        self._refresh_count = 0

    # ------------------------------------------------------------------
    # BULK UPSERT
    # ------------------------------------------------------------------

    def upsert_all(self, payload: Iterable[ClientPayload]) -> int:
        """
        Replace the full client set.

        Descriptive data comes from the payload. For known clients the
        local ``downtime_counter`` is kept and ``last_seen_at`` never moves
        backwards; new clients start from whatever the payload carries.
        Clients missing from the payload are retired; invalid entries are
        skipped.

        Returns the number of clients now registered.
        """
        incoming: Dict[str, ClientRecord] = {}
        skipped = 0

        for entry in payload:
            try:
                record = self._coerce(entry)
            except InvalidClientRecordError as e:
                skipped += 1
                logger.warning(f"[Registry] Skipping entry: {e.log_format()}")
                continue

            if record.client_id in incoming:
                logger.warning(
                    f"[Registry] Duplicate client id {record.client_id} in refresh, last one wins"
                )

            existing = self._records.get(record.client_id)
            if existing is not None:
                record = record.model_copy(update=self._carry_over(existing, record))

            incoming[record.client_id] = record

        retired = [cid for cid in self._records if cid not in incoming]
        added = [cid for cid in incoming if cid not in self._records]

        self._records = incoming
        self._refresh_count += 1

        logger.info(
            f"[Registry] ✓ Refreshed — {len(incoming)} clients "
            f"(+{len(added)} new, -{len(retired)} retired, {skipped} skipped)"
        )
        if retired:
            logger.info(f"[Registry] Retired clients: {', '.join(retired)}")
        return len(incoming)

    @staticmethod
    def _carry_over(existing: ClientRecord, record: ClientRecord) -> Dict[str, Any]:
        """Runtime state a refresh may not take away from a known client."""
        seen = [t for t in (existing.last_seen_at, record.last_seen_at) if t is not None]
        return {
            # owned by the local probe loop, upstream downTime is ignored
            "downtime_counter": existing.downtime_counter,
            "last_seen_at": max(seen) if seen else None,
        }

    @staticmethod
    def _coerce(entry: ClientPayload) -> ClientRecord:
        if isinstance(entry, ClientRecord):
            return entry
        if not isinstance(entry, Mapping):
            raise InvalidClientRecordError(
                f"Expected an object, got {type(entry).__name__}"
            )
        try:
            return ClientRecord.model_validate(dict(entry))
        except ValidationError as e:
            client_id = entry.get("clientId") or entry.get("client_id")
            raise InvalidClientRecordError(
                f"Invalid client record: {e.error_count()} validation error(s)",
                client_id=str(client_id) if client_id else None,
                cause=e,
            ) from e

    # ------------------------------------------------------------------
    # SINGLE RECORD ACCESS
    # ------------------------------------------------------------------

    def get(self, client_id: str) -> Optional[ClientRecord]:
        return self._records.get(client_id)

    def require(self, client_id: str) -> ClientRecord:
        """Return the record or raise ``UnknownClientError``."""
        record = self._records.get(client_id)
        if record is None:
            raise UnknownClientError(client_id)
        return record

    def update(self, client_id: str, mutator: Mutator) -> Optional[ClientRecord]:
        """
        Apply ``mutator`` to the current record and store the result.

        The mutator receives the current record and returns a mapping of
        field changes (or nothing for no change). Unknown ids are logged
        and dropped; records are never created here.
        """
        current = self._records.get(client_id)
        if current is None:
            logger.warning(f"[Registry] Update for unknown client {client_id} dropped")
            return None

        changes = mutator(current)
        if not changes:
            return current

        updated = current.model_copy(update=dict(changes))
        self._records[client_id] = updated
        return updated

    # ------------------------------------------------------------------
    # QUERIES
    # ------------------------------------------------------------------

    def all(self) -> List[ClientRecord]:
        """Snapshot of all records in registry order."""
        return list(self._records.values())

    def ids(self) -> List[str]:
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, client_id: object) -> bool:
        return client_id in self._records

    def __iter__(self) -> Iterator[ClientRecord]:
        return iter(self.all())

    def get_stats(self) -> Dict[str, Any]:
        records = self._records.values()
        return {
            "clients": len(self._records),
            "refreshes": self._refresh_count,
            "degrading": sum(1 for r in records if r.downtime_counter > 0),
            "recovering": sum(1 for r in records if r.downtime_counter < 0),
            "never_seen": sum(1 for r in records if r.last_seen_at is None),
        }
