"""Confidential aggregation protocols: encrypted vote rooms and score groups."""

from .common import (
    # Exceptions
    AggregationError,
    AuthorizationError,
    CollectionStateError,
    CollectionExistsError,
    CollectionNotFoundError,
    CollectionFinalizedError,
    NotFinalizedError,
    AlreadySubmittedError,
    ValidationError,
    EmptyMembersError,
    DuplicateMemberError,
    IncompleteVotesError,
    DuplicateVoteError,
    UnknownMemberError,
    KeyMismatchError,
    VotingPeriodEndedError,

    # Events
    CollectionCreated,
    SubmissionAccepted,
    CollectionFinalized,
    EventLog,

    # Infrastructure
    SystemClock,
    ManualClock,
    CollectionLocks,
    normalize_collection_id,
    derive_collection_id
)
from .room_voting import VoteRoomRegistry, Vote, RoomDetails, FinalizedRoom
from .score_group import ScoreGroupRegistry, GroupDetails, GroupResult

__all__ = [
    # Protocols
    'VoteRoomRegistry',
    'Vote',
    'RoomDetails',
    'FinalizedRoom',
    'ScoreGroupRegistry',
    'GroupDetails',
    'GroupResult',

    # Exceptions
    'AggregationError',
    'AuthorizationError',
    'CollectionStateError',
    'CollectionExistsError',
    'CollectionNotFoundError',
    'CollectionFinalizedError',
    'NotFinalizedError',
    'AlreadySubmittedError',
    'ValidationError',
    'EmptyMembersError',
    'DuplicateMemberError',
    'IncompleteVotesError',
    'DuplicateVoteError',
    'UnknownMemberError',
    'KeyMismatchError',
    'VotingPeriodEndedError',

    # Events
    'CollectionCreated',
    'SubmissionAccepted',
    'CollectionFinalized',
    'EventLog',

    # Infrastructure
    'SystemClock',
    'ManualClock',
    'CollectionLocks',
    'normalize_collection_id',
    'derive_collection_id'
]
