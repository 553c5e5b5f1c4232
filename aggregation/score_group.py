"""
Encrypted Score Groups
======================
Unstructured pooling: anyone may open a group, each identity submits one
encrypted score, and the group's creator finalizes it into a single
homomorphic sum plus the submission count.

By default the published aggregate is (encrypted_sum, count) and the average
is taken after decryption. With publish_average=True the sum is divided by
the count homomorphically before publishing.

Every group is bound to one Paillier public key, either at creation or by
its first accepted score; scores under any other key are refused.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, List, Optional, Set

from homomorphic import (
    BigNumber,
    Ciphertext,
    PublicKey,
    combine_all,
    divide_const,
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
    EventLog,
    NotFinalizedError,
    SubmissionAccepted,
    SystemClock,
    ValidationError,
    normalize_collection_id,
    require_matching_key,
    short_id,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GroupDetails:
    group_id: bytes
    owner: str
    participant_count: int
    active: bool
    public_key: Optional[PublicKey] = None


@dataclass(frozen=True)
class GroupResult:
    """Published aggregate of a finalized group"""
    group_id: bytes
    owner: str
    encrypted_sum: Ciphertext
    count: int
    timestamp: float
    finalized_at: float
    averaged: bool = False
    public_key: Optional[PublicKey] = field(default=None, repr=False)
    submitters: FrozenSet[str] = field(default_factory=frozenset, repr=False)


@dataclass
class _ActiveGroup:
    owner: str
    created_at: float
    # Fixed at creation or by the first accepted score
    public_key: Optional[PublicKey] = None
    scores: List[Ciphertext] = field(default_factory=list)
    submitted: Set[str] = field(default_factory=set)


class ScoreGroupRegistry:
    """Table of score groups; each group is owned by its creator"""

    def __init__(
        self,
        clock: Optional[Callable[[], float]] = None,
        publish_average: bool = False,
        event_log: Optional[EventLog] = None
    ):
        self.clock = clock or SystemClock()
        self.publish_average = publish_average
        self.event_log = event_log or EventLog()

        self._active: Dict[bytes, _ActiveGroup] = {}
        self._finalized: Dict[bytes, GroupResult] = {}
        self._locks = CollectionLocks()

        logger.info(
            f"Initialized score group registry (publish_average={publish_average})")

    def create_group(self, caller: str, group_id,
                     public_key: Optional[PublicKey] = None) -> GroupDetails:
        group_id = normalize_collection_id(group_id)
        if public_key is not None:
            validate_public_key(public_key)

        with self._locks.for_collection(group_id):
            if group_id in self._active:
                raise CollectionExistsError("Group exists")
            if group_id in self._finalized:
                raise CollectionExistsError("Group already finalized")

            now = self.clock()
            self._active[group_id] = _ActiveGroup(
                owner=caller, created_at=now, public_key=public_key)
            self.event_log.emit(CollectionCreated(group_id, now, caller))

        logger.info(f"Created group {short_id(group_id)} owned by {caller}")
        return GroupDetails(group_id=group_id, owner=caller, participant_count=0,
                            active=True, public_key=public_key)

    def submit_score(self, caller: str, group_id, ciphertext: Ciphertext,
                     public_key: Optional[PublicKey] = None):
        """
        Record one encrypted score for caller.

        The ciphertext is range-checked against the group's key before it is
        stored. A supplied public_key must match the group's key if one is
        bound, and binds it otherwise. Omitting public_key is only allowed
        once the group has a key.
        """
        group_id = normalize_collection_id(group_id)
        if public_key is not None:
            validate_public_key(public_key)

        with self._locks.for_collection(group_id):
            if group_id in self._finalized:
                raise CollectionFinalizedError("Group already finalized")
            group = self._active.get(group_id)
            if group is None:
                raise CollectionNotFoundError("Group doesn't exist")
            if caller in group.submitted:
                logger.warning(f"Duplicate score from {caller} to {short_id(group_id)}")
                raise AlreadySubmittedError("Already submitted score")

            if public_key is None:
                public_key = group.public_key
                if public_key is None:
                    raise ValidationError("Public key required until the group has one")
            else:
                require_matching_key(group.public_key, public_key)
            validate_ciphertext(ciphertext, public_key)

            if group.public_key is None:
                group.public_key = public_key
            group.scores.append(ciphertext)
            group.submitted.add(caller)
            self.event_log.emit(SubmissionAccepted(group_id, caller))

        logger.info(f"Accepted score from {caller} in group {short_id(group_id)}")

    def finalize_group(self, caller: str, group_id, public_key: PublicKey) -> GroupResult:
        group_id = normalize_collection_id(group_id)

        with self._locks.for_collection(group_id):
            if group_id in self._finalized:
                raise CollectionFinalizedError("Group already finalized")
            group = self._active.get(group_id)
            if group is None:
                raise CollectionNotFoundError("Group doesn't exist")
            if caller != group.owner:
                logger.warning(f"Rejected finalization of {short_id(group_id)} by {caller}")
                raise AuthorizationError("Not group owner")

            validate_public_key(public_key)
            require_matching_key(group.public_key, public_key)
            count = len(group.scores)
            if count:
                encrypted_sum = combine_all(group.scores, public_key)
            else:
                encrypted_sum = trivial_zero()

            averaged = self.publish_average and count > 0
            if averaged:
                encrypted_sum = divide_const(encrypted_sum, BigNumber.from_int(count), public_key)

            result = GroupResult(
                group_id=group_id,
                owner=group.owner,
                encrypted_sum=encrypted_sum,
                count=count,
                timestamp=group.created_at,
                finalized_at=self.clock(),
                averaged=averaged,
                public_key=public_key,
                submitters=frozenset(group.submitted)
            )

            self._finalized[group_id] = result
            del self._active[group_id]
            self.event_log.emit(CollectionFinalized(group_id, result))

        logger.info(f"Finalized group {short_id(group_id)} with {count} scores")
        return result

    def get_result(self, group_id) -> GroupResult:
        group_id = normalize_collection_id(group_id)
        result = self._finalized.get(group_id)
        if result is None:
            raise NotFinalizedError("Not finalized")
        return result

    def is_finalized(self, group_id) -> bool:
        return normalize_collection_id(group_id) in self._finalized

    def has_submitted(self, group_id, participant: str) -> bool:
        group_id = normalize_collection_id(group_id)
        group = self._active.get(group_id)
        if group is not None:
            return participant in group.submitted
        result = self._finalized.get(group_id)
        if result is not None:
            return participant in result.submitters
        raise CollectionNotFoundError("Group doesn't exist")

    def get_group_details(self, group_id) -> GroupDetails:
        group_id = normalize_collection_id(group_id)
        group = self._active.get(group_id)
        if group is not None:
            return GroupDetails(
                group_id, group.owner, len(group.submitted), True, group.public_key)

        result = self._finalized.get(group_id)
        if result is None:
            raise CollectionNotFoundError("Group doesn't exist")
        return GroupDetails(group_id, result.owner, result.count, False, result.public_key)

    def __len__(self) -> int:
        return len(self._active) + len(self._finalized)
