#!/usr/bin/env python3
"""
Integration tests for the confidential aggregation system
Covers the full request path: signing -> verification -> payload decoding ->
protocol registries -> published aggregates
"""

import dataclasses

import pytest

from aggregation import (
    AuthorizationError,
    CollectionCreated,
    CollectionExistsError,
    CollectionFinalized,
    KeyMismatchError,
    ValidationError,
    derive_collection_id,
)
from auth import AuthenticationError, CallerCredentials, sign_request
from confidential_aggregation_system import (
    ConfidentialAggregationSystem,
    create_group_payload,
    create_room_payload,
    finalize_group_payload,
    room_votes_payload,
    score_payload,
)
from config import CipherConfig, GroupConfig, SystemConfig
from homomorphic import MalformedInputError

ROOM = derive_collection_id("integration-room")
GROUP = derive_collection_id("integration-group")


@pytest.fixture
def owner():
    return CallerCredentials.generate()


@pytest.fixture
def config():
    # Test keys are 512 bits
    return SystemConfig(cipher_config=CipherConfig(min_modulus_bits=256))


@pytest.fixture
def system(owner, config, clock):
    return ConfidentialAggregationSystem(owner.identity, config=config, clock=clock)


def send(system, credentials, action, collection_id, payload=None):
    request = sign_request(credentials, action, collection_id.hex(), payload,
                           timestamp=system.clock())
    return system.handle(request)


class TestRoomWorkflow:

    def test_full_room_flow(self, system, owner, keys):
        members = [1, 2, 3]
        receipt = send(system, owner, 'create_room', ROOM, {'member_ids': members})
        assert receipt.caller == owner.identity
        assert receipt.result.active

        voters = [CallerCredentials.generate() for _ in range(2)]
        for voter in voters:
            votes = {m: keys.encrypt(v) for m, v in zip(members, [100, 200, 300])}
            send(system, voter, 'submit_votes', ROOM, room_votes_payload(keys.public_key, votes))

        assert system.has_voted(ROOM, voters[0].identity)
        send(system, owner, 'finalize_room', ROOM)

        record = system.get_finalized_room(ROOM)
        assert system.is_room_finalized(ROOM)
        assert record.participant_count == 2
        assert [keys.decrypt(record.total_for(m)) for m in members] == [200, 400, 600]

    def test_room_key_bound_at_creation(self, system, owner, keys, other_keys):
        send(system, owner, 'create_room', ROOM, create_room_payload([1, 2], keys.public_key))
        assert system.get_room_details(ROOM).public_key.matches(keys.public_key)

        voter = CallerCredentials.generate()
        votes = {1: other_keys.encrypt(1), 2: other_keys.encrypt(1)}
        with pytest.raises(KeyMismatchError):
            send(system, voter, 'submit_votes', ROOM,
                 room_votes_payload(other_keys.public_key, votes))
        assert not system.has_voted(ROOM, voter.identity)

    def test_non_owner_cannot_create_room(self, system, keys):
        outsider = CallerCredentials.generate()
        with pytest.raises(AuthorizationError):
            send(system, outsider, 'create_room', ROOM, {'member_ids': [1]})

    def test_member_ids_must_be_a_list(self, system, owner):
        with pytest.raises(ValidationError):
            send(system, owner, 'create_room', ROOM, {'member_ids': 'abc'})

    def test_malformed_vote_payload(self, system, owner, keys):
        send(system, owner, 'create_room', ROOM, {'member_ids': [1]})
        voter = CallerCredentials.generate()
        payload = {'public_key': keys.public_key.to_hex(), 'votes': [{'member_id': 1}]}
        with pytest.raises(ValidationError):
            send(system, voter, 'submit_votes', ROOM, payload)

    def test_malformed_ciphertext_hex(self, system, owner, keys):
        send(system, owner, 'create_room', ROOM, {'member_ids': [1]})
        voter = CallerCredentials.generate()
        payload = {
            'public_key': keys.public_key.to_hex(),
            'votes': [{'member_id': 1, 'ciphertext': '0xnothex'}]
        }
        with pytest.raises(ValidationError):
            send(system, voter, 'submit_votes', ROOM, payload)
        assert not system.has_voted(ROOM, voter.identity)


class TestGroupWorkflow:

    def test_full_group_flow(self, system, keys):
        creator = CallerCredentials.generate()
        send(system, creator, 'create_group', GROUP, create_group_payload(keys.public_key))

        for score in (95, 105, 100):
            member = CallerCredentials.generate()
            send(system, member, 'submit_score', GROUP, score_payload(keys.encrypt(score)))

        send(system, creator, 'finalize_group', GROUP, finalize_group_payload(keys.public_key))

        result = system.get_group_result(GROUP)
        assert result.count == 3
        assert keys.decrypt(result.encrypted_sum) / result.count == 100
        assert not system.get_group_details(GROUP).active

    def test_score_under_foreign_key_rejected(self, system, keys, other_keys):
        creator = CallerCredentials.generate()
        send(system, creator, 'create_group', GROUP, create_group_payload(keys.public_key))

        mallory = CallerCredentials.generate()
        with pytest.raises(KeyMismatchError):
            send(system, mallory, 'submit_score', GROUP,
                 score_payload(other_keys.encrypt(7), other_keys.public_key))

        send(system, CallerCredentials.generate(), 'submit_score', GROUP,
             score_payload(keys.encrypt(40)))
        send(system, creator, 'finalize_group', GROUP, finalize_group_payload(keys.public_key))
        result = system.get_group_result(GROUP)
        assert result.count == 1
        assert keys.decrypt(result.encrypted_sum) == 40

    def test_small_key_rejected_at_creation(self, system, toy_keys):
        creator = CallerCredentials.generate()
        with pytest.raises(ValidationError, match="below"):
            send(system, creator, 'create_group', GROUP,
                 create_group_payload(toy_keys.public_key))

    def test_published_average(self, owner, clock, keys):
        config = SystemConfig(cipher_config=CipherConfig(min_modulus_bits=256),
                              group_config=GroupConfig(publish_average=True))
        system = ConfidentialAggregationSystem(owner.identity, config=config, clock=clock)

        send(system, owner, 'create_group', GROUP)
        for score in (95, 105, 100):
            member = CallerCredentials.generate()
            send(system, member, 'submit_score', GROUP,
                 score_payload(keys.encrypt(score), keys.public_key))
        send(system, owner, 'finalize_group', GROUP, finalize_group_payload(keys.public_key))

        assert keys.decrypt(system.get_group_result(GROUP).encrypted_sum) == 100

    def test_only_creator_finalizes(self, system, keys):
        creator, other = CallerCredentials.generate(), CallerCredentials.generate()
        send(system, creator, 'create_group', GROUP)
        with pytest.raises(AuthorizationError):
            send(system, other, 'finalize_group', GROUP, finalize_group_payload(keys.public_key))

    def test_key_below_minimum_size(self, system, toy_keys):
        creator = CallerCredentials.generate()
        send(system, creator, 'create_group', GROUP)
        with pytest.raises(ValidationError, match="below"):
            send(system, creator, 'finalize_group', GROUP,
                 finalize_group_payload(toy_keys.public_key))

    def test_degenerate_key(self, system):
        creator = CallerCredentials.generate()
        send(system, creator, 'create_group', GROUP)
        with pytest.raises(MalformedInputError):
            send(system, creator, 'finalize_group', GROUP, {'public_key': {'n': '0x01', 'g': '0x01'}})

    def test_missing_public_key(self, system):
        creator = CallerCredentials.generate()
        send(system, creator, 'create_group', GROUP)
        with pytest.raises(ValidationError):
            send(system, creator, 'finalize_group', GROUP, {})

    def test_missing_ciphertext(self, system):
        creator = CallerCredentials.generate()
        send(system, creator, 'create_group', GROUP)
        with pytest.raises(ValidationError):
            send(system, creator, 'submit_score', GROUP, {})


class TestRequestAuthentication:

    def test_replayed_request(self, system, owner):
        request = sign_request(owner, 'create_room', ROOM.hex(), {'member_ids': [1]},
                               timestamp=system.clock())
        system.handle(request)
        with pytest.raises(AuthenticationError, match="Replayed"):
            system.handle(request)

    def test_tampered_payload(self, system, owner):
        request = sign_request(owner, 'create_room', ROOM.hex(), {'member_ids': [1]},
                               timestamp=system.clock())
        forged = dataclasses.replace(request, payload={'member_ids': [1, 2]})
        with pytest.raises(AuthenticationError, match="Invalid signature"):
            system.handle(forged)
        assert len(system.rooms) == 0

    def test_claimed_identity_must_match_key(self, system, owner):
        outsider = CallerCredentials.generate()
        request = sign_request(outsider, 'create_room', ROOM.hex(), {'member_ids': [1]},
                               timestamp=system.clock())
        forged = dataclasses.replace(request, identity=owner.identity)
        with pytest.raises(AuthenticationError):
            system.handle(forged)

    def test_stale_request(self, system, owner, clock):
        request = sign_request(owner, 'create_room', ROOM.hex(), {'member_ids': [1]},
                               timestamp=system.clock())
        clock.advance(301)
        with pytest.raises(AuthenticationError, match="window"):
            system.handle(request)

    def test_malformed_signature(self, system, owner):
        request = sign_request(owner, 'create_room', ROOM.hex(), {'member_ids': [1]},
                               timestamp=system.clock())
        with pytest.raises(AuthenticationError):
            system.handle(dataclasses.replace(request, signature='zz'))

    def test_unknown_action(self, system, owner):
        with pytest.raises(ValidationError, match="Unknown action"):
            send(system, owner, 'delete_room', ROOM)

    def test_receipts_are_unique(self, system, owner):
        first = send(system, owner, 'create_room', ROOM, {'member_ids': [1]})
        second = send(system, owner, 'create_group', GROUP)
        assert first.receipt_id != second.receipt_id
        assert len(first.receipt_id) == 64


class TestObservability:

    def test_events_recorded_across_protocols(self, system, owner, keys):
        send(system, owner, 'create_room', ROOM, {'member_ids': [1]})
        send(system, owner, 'create_group', GROUP)
        send(system, owner, 'finalize_room', ROOM)
        send(system, owner, 'finalize_group', GROUP, finalize_group_payload(keys.public_key))

        log = system.event_log
        assert {e.collection_id for e in log.of_type(CollectionCreated)} == {ROOM, GROUP}
        assert len(log.of_type(CollectionFinalized)) == 2

    def test_performance_summary(self, system, owner):
        send(system, owner, 'create_room', ROOM, {'member_ids': [1]})
        with pytest.raises(CollectionExistsError):
            send(system, owner, 'create_room', ROOM, {'member_ids': [1]})

        summary = system.performance_monitor.get_summary()
        assert summary['operations']['create_room']['count'] == 2
        assert summary['operations']['create_room']['failures'] == 1
        assert "CREATE_ROOM" in system.performance_report()
