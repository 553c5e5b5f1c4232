#!/usr/bin/env python3
"""
Confidential Aggregation System
===============================
Hosting facade over the two aggregation protocols. It plays the part a
ledger plays for the protocols: it authenticates callers, decodes the hex
wire payloads, serializes per-collection state changes, records events and
timings, and answers read-only queries.

Ciphertexts and public keys travel as hex strings. Private keys never reach
this process.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, List, Mapping, Optional

from aggregation import (
    EventLog,
    FinalizedRoom,
    GroupDetails,
    GroupResult,
    RoomDetails,
    ScoreGroupRegistry,
    SystemClock,
    ValidationError,
    Vote,
    VoteRoomRegistry,
)
from auth import RequestVerifier, SignedRequest
from config import SystemConfig
from homomorphic import (
    BigNumber,
    Ciphertext,
    MalformedNumberError,
    PublicKey,
    validate_public_key,
)
from utils import PerformanceMonitor, compute_hash, create_performance_report

logger = logging.getLogger(__name__)

# ============================================================================
# WIRE PAYLOADS
# ============================================================================


def create_room_payload(member_ids: List[Hashable],
                        public_key: Optional[PublicKey] = None) -> Dict[str, Any]:
    """Payload for a create_room request; public_key binds the room's key up front"""
    payload = {'member_ids': list(member_ids)}
    if public_key is not None:
        payload['public_key'] = public_key.to_hex()
    return payload


def create_group_payload(public_key: Optional[PublicKey] = None) -> Dict[str, Any]:
    payload = {}
    if public_key is not None:
        payload['public_key'] = public_key.to_hex()
    return payload


def room_votes_payload(public_key: PublicKey, votes: Mapping[Hashable, Ciphertext]) -> Dict[str, Any]:
    """Payload for a submit_votes request"""
    return {
        'public_key': public_key.to_hex(),
        'votes': [
            {'member_id': member_id, 'ciphertext': ciphertext.to_hex()}
            for member_id, ciphertext in votes.items()
        ]
    }


def score_payload(ciphertext: Ciphertext, public_key: Optional[PublicKey] = None) -> Dict[str, Any]:
    """Payload for a submit_score request"""
    payload = {'ciphertext': ciphertext.to_hex()}
    if public_key is not None:
        payload['public_key'] = public_key.to_hex()
    return payload


def finalize_group_payload(public_key: PublicKey) -> Dict[str, Any]:
    return {'public_key': public_key.to_hex()}


@dataclass(frozen=True)
class RequestReceipt:
    """Acknowledgement of an accepted request"""
    receipt_id: str
    action: str
    collection_id: str
    caller: str
    result: Any = None


# ============================================================================
# FACADE
# ============================================================================


class ConfidentialAggregationSystem:
    """
    Entry point for authenticated requests against vote rooms and score
    groups:
    1. Verify the request signature and freshness
    2. Decode the payload into keys, ciphertexts and votes
    3. Dispatch to the protocol registry under performance monitoring
    """

    def __init__(
        self,
        owner_identity: str,
        config: Optional[SystemConfig] = None,
        clock: Optional[Callable[[], float]] = None
    ):
        self.config = config or SystemConfig()
        self.owner_identity = owner_identity
        self.clock = clock or SystemClock()
        self.event_log = EventLog()

        self.rooms = VoteRoomRegistry(
            owner=owner_identity,
            clock=self.clock,
            voting_period_hours=self.config.room_config.voting_period_hours,
            event_log=self.event_log
        )
        self.groups = ScoreGroupRegistry(
            clock=self.clock,
            publish_average=self.config.group_config.publish_average,
            event_log=self.event_log
        )
        self.verifier = RequestVerifier(
            max_clock_skew=self.config.auth_config.max_clock_skew_seconds,
            clock=self.clock
        )
        self.performance_monitor = PerformanceMonitor(
            enabled=self.config.enable_performance_monitoring)

        self._handlers: Dict[str, Callable[[str, str, Dict[str, Any]], Any]] = {
            'create_room': self._create_room,
            'submit_votes': self._submit_votes,
            'finalize_room': self._finalize_room,
            'create_group': self._create_group,
            'submit_score': self._submit_score,
            'finalize_group': self._finalize_group,
        }

        logger.info(f"Confidential aggregation system ready (owner={owner_identity[:16]})")

    def handle(self, request: SignedRequest) -> RequestReceipt:
        """Authenticate and execute one state-changing request"""
        handler = self._handlers.get(request.action)
        if handler is None:
            raise ValidationError(f"Unknown action: {request.action}")

        caller = self.verifier.verify(request)

        with self.performance_monitor.start_operation(request.action):
            result = handler(caller, request.collection_id, request.payload)

        return RequestReceipt(
            receipt_id=compute_hash(request.signing_bytes() + bytes.fromhex(request.signature)),
            action=request.action,
            collection_id=request.collection_id,
            caller=caller,
            result=result
        )

    # ------------------------------------------------------------------
    # Payload decoding
    # ------------------------------------------------------------------

    def _public_key(self, payload: Dict[str, Any]) -> PublicKey:
        try:
            public_key = PublicKey.from_hex(payload['public_key'])
        except (KeyError, TypeError, MalformedNumberError) as e:
            raise ValidationError(f"Malformed public key: {e}") from e

        bits = validate_public_key(public_key)
        if bits < self.config.cipher_config.min_modulus_bits:
            raise ValidationError(
                f"Modulus of {bits} bits is below the {self.config.cipher_config.min_modulus_bits}-bit minimum")
        return public_key

    def _optional_public_key(self, payload: Dict[str, Any]) -> Optional[PublicKey]:
        return self._public_key(payload) if 'public_key' in payload else None

    @staticmethod
    def _ciphertext(text: Any) -> Ciphertext:
        try:
            return BigNumber.from_hex(text)
        except MalformedNumberError as e:
            raise ValidationError(f"Malformed ciphertext: {e}") from e

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _create_room(self, caller: str, collection_id: str, payload: Dict[str, Any]) -> RoomDetails:
        member_ids = payload.get('member_ids')
        if not isinstance(member_ids, list):
            raise ValidationError("member_ids must be a list")
        return self.rooms.create_room(
            caller, collection_id, member_ids, self._optional_public_key(payload))

    def _submit_votes(self, caller: str, collection_id: str, payload: Dict[str, Any]):
        public_key = self._public_key(payload)
        try:
            votes = [
                Vote(member_id=entry['member_id'], ciphertext=self._ciphertext(entry['ciphertext']))
                for entry in payload['votes']
            ]
        except (KeyError, TypeError) as e:
            raise ValidationError(f"Malformed votes: {e}") from e

        self.rooms.submit_votes(caller, collection_id, votes, public_key)

    def _finalize_room(self, caller: str, collection_id: str, payload: Dict[str, Any]) -> FinalizedRoom:
        return self.rooms.finalize_room(caller, collection_id)

    def _create_group(self, caller: str, collection_id: str, payload: Dict[str, Any]) -> GroupDetails:
        return self.groups.create_group(caller, collection_id, self._optional_public_key(payload))

    def _submit_score(self, caller: str, collection_id: str, payload: Dict[str, Any]):
        if 'ciphertext' not in payload:
            raise ValidationError("Missing ciphertext")
        ciphertext = self._ciphertext(payload['ciphertext'])
        public_key = self._optional_public_key(payload)
        self.groups.submit_score(caller, collection_id, ciphertext, public_key)

    def _finalize_group(self, caller: str, collection_id: str, payload: Dict[str, Any]) -> GroupResult:
        return self.groups.finalize_group(caller, collection_id, self._public_key(payload))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_finalized_room(self, room_id) -> FinalizedRoom:
        return self.rooms.get_finalized_details(room_id)

    def get_room_details(self, room_id) -> RoomDetails:
        return self.rooms.get_room_details(room_id)

    def has_voted(self, room_id, participant: str) -> bool:
        return self.rooms.has_voted(room_id, participant)

    def is_room_finalized(self, room_id) -> bool:
        return self.rooms.is_finalized(room_id)

    def get_group_result(self, group_id) -> GroupResult:
        return self.groups.get_result(group_id)

    def get_group_details(self, group_id) -> GroupDetails:
        return self.groups.get_group_details(group_id)

    def has_submitted(self, group_id, participant: str) -> bool:
        return self.groups.has_submitted(group_id, participant)

    def is_group_finalized(self, group_id) -> bool:
        return self.groups.is_finalized(group_id)

    def performance_report(self) -> str:
        return create_performance_report(self.performance_monitor)
