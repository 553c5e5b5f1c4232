"""
Shared building blocks for the aggregation protocols: error taxonomy,
events, clocks, per-collection locking and collection identifiers.
"""

import hashlib
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Hashable, List, Union

logger = logging.getLogger(__name__)

COLLECTION_ID_BYTES = 32
DEFAULT_LOCK_STRIPES = 64

# ============================================================================
# EXCEPTIONS
# ============================================================================


class AggregationError(Exception):
    """Base exception for protocol-level failures"""
    pass


class AuthorizationError(AggregationError):
    """Raised when the caller may not perform an owner-only action"""
    pass


class CollectionStateError(AggregationError):
    """Raised when a collection is in the wrong state for an operation"""
    pass


class CollectionExistsError(CollectionStateError):
    pass


class CollectionNotFoundError(CollectionStateError):
    pass


class CollectionFinalizedError(CollectionStateError):
    pass


class NotFinalizedError(CollectionStateError):
    pass


class AlreadySubmittedError(CollectionStateError):
    pass


class ValidationError(AggregationError):
    """Raised when a request's contents are invalid"""
    pass


class EmptyMembersError(ValidationError):
    pass


class DuplicateMemberError(ValidationError):
    pass


class IncompleteVotesError(ValidationError):
    pass


class DuplicateVoteError(ValidationError):
    pass


class UnknownMemberError(ValidationError):
    pass


class KeyMismatchError(ValidationError):
    """Raised when a submission uses a key other than the collection's"""
    pass


class VotingPeriodEndedError(AggregationError):
    """Raised when a submission arrives after the voting deadline"""
    pass


# ============================================================================
# EVENTS
# ============================================================================


@dataclass(frozen=True)
class CollectionCreated:
    collection_id: bytes
    timestamp: float
    creator: str


@dataclass(frozen=True)
class SubmissionAccepted:
    collection_id: bytes
    submitter: str


@dataclass(frozen=True)
class CollectionFinalized:
    collection_id: bytes
    aggregate: Any


class EventLog:
    """Append-only event record with synchronous subscribers"""

    def __init__(self):
        self._events: List[Any] = []
        self._subscribers: List[Callable[[Any], None]] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Callable[[Any], None]):
        with self._lock:
            self._subscribers.append(callback)

    def emit(self, event: Any):
        with self._lock:
            self._events.append(event)
            subscribers = list(self._subscribers)

        logger.debug(f"Event {type(event).__name__} for {event.collection_id.hex()[:16]}")
        # Events are emitted after the state change is committed
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception(f"Subscriber failed on {type(event).__name__}")

    @property
    def events(self) -> List[Any]:
        with self._lock:
            return list(self._events)

    def of_type(self, event_type: type) -> List[Any]:
        return [e for e in self.events if isinstance(e, event_type)]


# ============================================================================
# CLOCKS
# ============================================================================


class SystemClock:
    """Wall-clock seconds supplied by the host"""

    def __call__(self) -> float:
        return time.time()


class ManualClock:
    """Clock that only moves when told to"""

    def __init__(self, start: float = 1_700_000_000.0):
        self._now = float(start)
        self._lock = threading.Lock()

    def __call__(self) -> float:
        with self._lock:
            return self._now

    def advance(self, seconds: float):
        if seconds < 0:
            raise ValueError("Clock cannot move backwards")
        with self._lock:
            self._now += seconds

    def advance_hours(self, hours: float):
        self.advance(hours * 3600)


# ============================================================================
# LOCKING
# ============================================================================


class CollectionLocks:
    """
    Fixed pool of striped locks. Every collection id maps to one stripe, so
    operations on the same id are serialized while the pool never grows.
    Ids sharing a stripe are serialized too; locks are never nested.
    """

    def __init__(self, stripes: int = DEFAULT_LOCK_STRIPES):
        if stripes < 1:
            raise ValueError("At least one lock stripe is required")
        self._stripes: List[threading.Lock] = [threading.Lock() for _ in range(stripes)]

    def for_collection(self, collection_id: Hashable) -> threading.Lock:
        return self._stripes[hash(collection_id) % len(self._stripes)]

    def __len__(self) -> int:
        return len(self._stripes)


# ============================================================================
# IDENTIFIERS
# ============================================================================


def normalize_collection_id(collection_id: Union[bytes, str]) -> bytes:
    """Accept 32 raw bytes or their hex form (optionally 0x-prefixed)"""
    if isinstance(collection_id, str):
        text = collection_id[2:] if collection_id[:2].lower() == '0x' else collection_id
        try:
            collection_id = bytes.fromhex(text)
        except ValueError as e:
            raise ValidationError(f"Invalid collection id: {collection_id!r}") from e

    if not isinstance(collection_id, (bytes, bytearray)):
        raise ValidationError(
            f"Collection id must be bytes or hex, got {type(collection_id).__name__}")
    if len(collection_id) != COLLECTION_ID_BYTES:
        raise ValidationError(
            f"Collection id must be {COLLECTION_ID_BYTES} bytes, got {len(collection_id)}")
    return bytes(collection_id)


def derive_collection_id(label: str) -> bytes:
    """Hash a human-readable label into a collection id"""
    return hashlib.sha256(label.encode('utf-8')).digest()


def short_id(collection_id: bytes) -> str:
    return collection_id.hex()[:16]


def require_matching_key(bound, supplied):
    """Raise KeyMismatchError unless supplied equals the collection's bound key"""
    if bound is not None and not bound.matches(supplied):
        raise KeyMismatchError("Public key does not match the collection's key")
