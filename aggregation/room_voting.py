"""
Encrypted Vote Rooms
====================
Deadline-bound rooms in which every participant submits one encrypted vote
per declared member. Votes are folded homomorphically into a running total
per member; finalization publishes the totals and retires the room id.

Lifecycle per room id: absent -> active -> finalized (terminal).
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, Hashable, Iterable, List, Optional, Set, Tuple

from homomorphic import (
    Ciphertext,
    PublicKey,
    combine,
    trivial_zero,
    validate_ciphertext,
    validate_public_key,
)

from .common import (
    AlreadySubmittedError,
    AuthorizationError,
    CollectionCreated,
    CollectionExistsError,
    CollectionFinalized,
    CollectionFinalizedError,
    CollectionLocks,
    CollectionNotFoundError,
    DuplicateMemberError,
    DuplicateVoteError,
    EmptyMembersError,
    EventLog,
    IncompleteVotesError,
    NotFinalizedError,
    SubmissionAccepted,
    SystemClock,
    UnknownMemberError,
    ValidationError,
    VotingPeriodEndedError,
    normalize_collection_id,
    require_matching_key,
    short_id,
)

logger = logging.getLogger(__name__)

DEFAULT_VOTING_PERIOD_HOURS = 24


@dataclass(frozen=True)
class Vote:
    """One encrypted vote for a declared member"""
    member_id: Hashable
    ciphertext: Ciphertext


@dataclass(frozen=True)
class RoomDetails:
    room_id: bytes
    owner: str
    created_at: float
    deadline: float
    member_ids: Tuple[Hashable, ...]
    participant_count: int
    active: bool
    public_key: Optional[PublicKey] = None


@dataclass(frozen=True)
class FinalizedRoom:
    """Published, read-only outcome of a room"""
    room_id: bytes
    owner: str
    timestamp: float
    finalized_at: float
    participant_count: int
    member_ids: Tuple[Hashable, ...]
    totals: Tuple[Ciphertext, ...]
    public_key: Optional[PublicKey] = field(default=None, repr=False)
    submitters: FrozenSet[str] = field(default_factory=frozenset, repr=False)

    def total_for(self, member_id: Hashable) -> Ciphertext:
        try:
            return self.totals[self.member_ids.index(member_id)]
        except ValueError:
            raise UnknownMemberError(f"Member {member_id!r} not in room") from None

    def as_mapping(self) -> Dict[Hashable, Ciphertext]:
        return dict(zip(self.member_ids, self.totals))


@dataclass
class _ActiveRoom:
    owner: str
    created_at: float
    member_ids: Tuple[Hashable, ...]
    # None marks a member no submission has touched yet
    totals: Dict[Hashable, Optional[Ciphertext]]
    # Fixed at creation or by the first accepted submission
    public_key: Optional[PublicKey] = None
    voted: Set[str] = field(default_factory=set)
    participants: List[str] = field(default_factory=list)


class VoteRoomRegistry:
    """Owner-administered table of vote rooms keyed by room id"""

    def __init__(
        self,
        owner: str,
        clock: Optional[Callable[[], float]] = None,
        voting_period_hours: float = DEFAULT_VOTING_PERIOD_HOURS,
        event_log: Optional[EventLog] = None
    ):
        if voting_period_hours <= 0:
            raise ValueError("Voting period must be positive")

        self.owner = owner
        self.clock = clock or SystemClock()
        self.voting_period_seconds = voting_period_hours * 3600
        self.event_log = event_log or EventLog()

        self._active: Dict[bytes, _ActiveRoom] = {}
        self._finalized: Dict[bytes, FinalizedRoom] = {}
        self._locks = CollectionLocks()

        logger.info(
            f"Initialized vote room registry (owner={owner}, period={voting_period_hours}h)")

    def _require_owner(self, caller: str):
        if caller != self.owner:
            logger.warning(f"Rejected owner-only action from {caller}")
            raise AuthorizationError("Not owner")

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def create_room(self, caller: str, room_id, member_ids: Iterable[Hashable],
                    public_key: Optional[PublicKey] = None) -> RoomDetails:
        """
        Open a room for member_ids. If public_key is given every submission
        must use it; otherwise the first accepted submission fixes the key.
        """
        self._require_owner(caller)
        room_id = normalize_collection_id(room_id)
        members = tuple(member_ids)
        if public_key is not None:
            validate_public_key(public_key)

        if not members:
            raise EmptyMembersError("Members list cannot be empty")
        seen = set()
        for member in members:
            try:
                if member in seen:
                    raise DuplicateMemberError(f"Duplicate member id {member!r}")
            except TypeError as e:
                raise ValidationError(f"Member ids must be hashable: {e}") from e
            seen.add(member)

        with self._locks.for_collection(room_id):
            if room_id in self._active or room_id in self._finalized:
                raise CollectionExistsError("Room already exists")

            now = self.clock()
            room = _ActiveRoom(
                owner=caller,
                created_at=now,
                member_ids=members,
                totals={member: None for member in members},
                public_key=public_key
            )
            self._active[room_id] = room
            self.event_log.emit(CollectionCreated(room_id, now, caller))

        logger.info(f"Created room {short_id(room_id)} with {len(members)} members")
        return self._details(room_id, room, active=True)

    def submit_votes(self, caller: str, room_id, votes: Iterable[Vote], public_key: PublicKey):
        room_id = normalize_collection_id(room_id)

        with self._locks.for_collection(room_id):
            if room_id in self._finalized:
                raise CollectionFinalizedError("Room already finalized")
            room = self._active.get(room_id)
            if room is None:
                raise CollectionNotFoundError("Room does not exist")
            if caller in room.voted:
                logger.warning(f"Duplicate submission from {caller} to {short_id(room_id)}")
                raise AlreadySubmittedError("Already voted")
            if self.clock() > room.created_at + self.voting_period_seconds:
                raise VotingPeriodEndedError("Voting period ended")

            votes = list(votes)
            if len(votes) != len(room.member_ids):
                raise IncompleteVotesError(
                    f"Incomplete votes: expected {len(room.member_ids)}, got {len(votes)}")

            seen = set()
            for vote in votes:
                if not isinstance(vote, Vote):
                    raise ValidationError(f"Expected Vote, got {type(vote).__name__}")
                try:
                    if vote.member_id in seen:
                        raise DuplicateVoteError(f"Duplicate vote for member {vote.member_id!r}")
                    if vote.member_id not in room.totals:
                        raise UnknownMemberError(f"Unknown member {vote.member_id!r}")
                except TypeError as e:
                    raise ValidationError(f"Member ids must be hashable: {e}") from e
                seen.add(vote.member_id)

            validate_public_key(public_key)
            require_matching_key(room.public_key, public_key)
            for vote in votes:
                validate_ciphertext(vote.ciphertext, public_key)

            # Compute every new total before touching the room
            updated = {}
            for vote in votes:
                current = room.totals[vote.member_id]
                if current is None:
                    updated[vote.member_id] = vote.ciphertext
                else:
                    updated[vote.member_id] = combine(current, vote.ciphertext, public_key)

            if room.public_key is None:
                room.public_key = public_key
            room.totals.update(updated)
            room.voted.add(caller)
            room.participants.append(caller)
            self.event_log.emit(SubmissionAccepted(room_id, caller))

        logger.info(
            f"Accepted votes from {caller} in room {short_id(room_id)} "
            f"({len(room.participants)} participants)")

    def finalize_room(self, caller: str, room_id) -> FinalizedRoom:
        self._require_owner(caller)
        room_id = normalize_collection_id(room_id)

        with self._locks.for_collection(room_id):
            if room_id in self._finalized:
                raise CollectionFinalizedError("Room already finalized")
            room = self._active.get(room_id)
            if room is None:
                raise CollectionNotFoundError("Room does not exist")

            record = FinalizedRoom(
                room_id=room_id,
                owner=room.owner,
                timestamp=room.created_at,
                finalized_at=self.clock(),
                participant_count=len(room.participants),
                member_ids=room.member_ids,
                totals=tuple(
                    room.totals[m] if room.totals[m] is not None else trivial_zero()
                    for m in room.member_ids),
                public_key=room.public_key,
                submitters=frozenset(room.voted)
            )

            # Publish before purging so readers always see one of the two
            self._finalized[room_id] = record
            del self._active[room_id]
            self.event_log.emit(CollectionFinalized(room_id, record))

        logger.info(
            f"Finalized room {short_id(room_id)} with {record.participant_count} participants")
        return record

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_finalized_details(self, room_id) -> FinalizedRoom:
        room_id = normalize_collection_id(room_id)
        record = self._finalized.get(room_id)
        if record is None:
            raise NotFinalizedError("Room not finalized")
        return record

    def has_voted(self, room_id, participant: str) -> bool:
        room_id = normalize_collection_id(room_id)
        room = self._active.get(room_id)
        if room is not None:
            return participant in room.voted
        record = self._finalized.get(room_id)
        if record is not None:
            return participant in record.submitters
        raise CollectionNotFoundError("Room does not exist")

    def is_finalized(self, room_id) -> bool:
        return normalize_collection_id(room_id) in self._finalized

    def get_room_details(self, room_id) -> RoomDetails:
        room_id = normalize_collection_id(room_id)
        room = self._active.get(room_id)
        if room is not None:
            return self._details(room_id, room, active=True)

        record = self._finalized.get(room_id)
        if record is None:
            raise CollectionNotFoundError("Room does not exist")
        return RoomDetails(
            room_id=room_id,
            owner=record.owner,
            created_at=record.timestamp,
            deadline=record.timestamp + self.voting_period_seconds,
            member_ids=record.member_ids,
            participant_count=record.participant_count,
            active=False,
            public_key=record.public_key
        )

    def _details(self, room_id: bytes, room: _ActiveRoom, active: bool) -> RoomDetails:
        return RoomDetails(
            room_id=room_id,
            owner=room.owner,
            created_at=room.created_at,
            deadline=room.created_at + self.voting_period_seconds,
            member_ids=room.member_ids,
            participant_count=len(room.participants),
            active=active,
            public_key=room.public_key
        )

    def __len__(self) -> int:
        return len(self._active) + len(self._finalized)
