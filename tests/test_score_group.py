"""
Score groups: one encrypted score per identity, creator-only finalization
into a homomorphic sum and count.
"""

import pytest

from aggregation import (
    AlreadySubmittedError,
    AuthorizationError,
    CollectionExistsError,
    CollectionFinalizedError,
    CollectionNotFoundError,
    KeyMismatchError,
    NotFinalizedError,
    ScoreGroupRegistry,
    ValidationError,
)
from homomorphic import BigNumber, CiphertextRangeError, MalformedInputError, PublicKey

CREATOR = "creator"
SCORES = {"alice": 95, "bob": 105, "carol": 100}


@pytest.fixture
def registry(clock):
    return ScoreGroupRegistry(clock=clock)


@pytest.fixture
def group(registry, group_id, keys):
    registry.create_group(CREATOR, group_id, keys.public_key)
    return group_id


def submit_all(registry, group_id, keys, scores=SCORES):
    for caller, score in scores.items():
        registry.submit_score(caller, group_id, keys.encrypt(score))


class TestCreateGroup:

    def test_creator_becomes_owner(self, registry, group_id):
        details = registry.create_group(CREATOR, group_id)
        assert details.owner == CREATOR
        assert details.participant_count == 0
        assert details.active
        assert details.public_key is None

    def test_key_bound_at_creation(self, registry, group_id, keys):
        details = registry.create_group(CREATOR, group_id, keys.public_key)
        assert details.public_key == keys.public_key
        assert registry.get_group_details(group_id).public_key == keys.public_key

    def test_invalid_key_at_creation(self, registry, group_id):
        with pytest.raises(MalformedInputError):
            registry.create_group(CREATOR, group_id, PublicKey.from_ints(1, 1))
        with pytest.raises(CollectionNotFoundError):
            registry.get_group_details(group_id)

    def test_existing_group(self, registry, group):
        with pytest.raises(CollectionExistsError, match="Group exists"):
            registry.create_group("someone-else", group)

    def test_finalized_group_cannot_be_recreated(self, registry, group, keys):
        registry.finalize_group(CREATOR, group, keys.public_key)
        with pytest.raises(CollectionExistsError, match="Group already finalized"):
            registry.create_group(CREATOR, group)


class TestSubmitScore:

    def test_submission_recorded(self, registry, group, keys):
        registry.submit_score("alice", group, keys.encrypt(95))
        assert registry.has_submitted(group, "alice")
        assert not registry.has_submitted(group, "bob")
        assert registry.get_group_details(group).participant_count == 1

    def test_duplicate_submission(self, registry, group, keys):
        registry.submit_score("alice", group, keys.encrypt(95))
        with pytest.raises(AlreadySubmittedError):
            registry.submit_score("alice", group, keys.encrypt(96))

    def test_absent_group(self, registry, group_id, keys):
        with pytest.raises(CollectionNotFoundError, match="Group doesn't exist"):
            registry.submit_score("alice", group_id, keys.encrypt(95))

    def test_finalized_group(self, registry, group, keys):
        registry.finalize_group(CREATOR, group, keys.public_key)
        with pytest.raises(CollectionFinalizedError):
            registry.submit_score("alice", group, keys.encrypt(95))

    def test_range_checked_with_key(self, registry, group, keys):
        with pytest.raises(CiphertextRangeError):
            registry.submit_score("alice", group, BigNumber.from_int(keys.n ** 2),
                                  keys.public_key)
        assert not registry.has_submitted(group, "alice")

    def test_out_of_range_score_rejected_without_blocking_group(self, registry, group, keys):
        with pytest.raises(CiphertextRangeError):
            registry.submit_score("mallory", group, BigNumber.from_int(keys.n ** 2))
        assert not registry.has_submitted(group, "mallory")

        submit_all(registry, group, keys)
        result = registry.finalize_group(CREATOR, group, keys.public_key)
        assert result.count == 3
        assert keys.decrypt(result.encrypted_sum) == 300

    def test_foreign_key_rejected_without_blocking_group(self, registry, group, keys,
                                                          other_keys):
        with pytest.raises(KeyMismatchError):
            registry.submit_score("mallory", group, other_keys.encrypt(1_000_000),
                                  other_keys.public_key)
        assert registry.get_group_details(group).participant_count == 0

        submit_all(registry, group, keys)
        result = registry.finalize_group(CREATOR, group, keys.public_key)
        assert result.count == 3
        assert "mallory" not in result.submitters
        assert keys.decrypt(result.encrypted_sum) == 300

    def test_first_score_binds_key(self, registry, group_id, keys, other_keys):
        registry.create_group(CREATOR, group_id)
        registry.submit_score("alice", group_id, keys.encrypt(95), keys.public_key)
        assert registry.get_group_details(group_id).public_key == keys.public_key

        # Later submitters may rely on the bound key
        registry.submit_score("bob", group_id, keys.encrypt(105))
        with pytest.raises(KeyMismatchError):
            registry.submit_score("carol", group_id, other_keys.encrypt(100),
                                  other_keys.public_key)

    def test_rejected_first_score_does_not_bind_key(self, registry, group_id, keys):
        registry.create_group(CREATOR, group_id)
        with pytest.raises(CiphertextRangeError):
            registry.submit_score("mallory", group_id, BigNumber.from_int(keys.n ** 2),
                                  keys.public_key)
        assert registry.get_group_details(group_id).public_key is None

    def test_key_required_until_bound(self, registry, group_id, keys):
        registry.create_group(CREATOR, group_id)
        with pytest.raises(ValidationError, match="Public key required"):
            registry.submit_score("alice", group_id, keys.encrypt(95))
        assert not registry.has_submitted(group_id, "alice")

    def test_malformed_encoding(self, registry, group):
        with pytest.raises(MalformedInputError):
            registry.submit_score("alice", group, BigNumber(val=b'\x07', bitlen=1))

    def test_negative_ciphertext(self, registry, group):
        with pytest.raises(MalformedInputError):
            registry.submit_score("alice", group, BigNumber.from_int(-3))

    def test_wrong_type(self, registry, group):
        with pytest.raises(MalformedInputError):
            registry.submit_score("alice", group, 12345)


class TestFinalizeGroup:

    def test_sum_and_count(self, registry, group, keys):
        submit_all(registry, group, keys)
        result = registry.finalize_group(CREATOR, group, keys.public_key)

        assert result.count == 3
        assert not result.averaged
        total = keys.decrypt(result.encrypted_sum)
        assert total == 300
        assert total / result.count == 100

    def test_published_average(self, group_id, keys, clock):
        registry = ScoreGroupRegistry(clock=clock, publish_average=True)
        registry.create_group(CREATOR, group_id, keys.public_key)
        submit_all(registry, group_id, keys)

        result = registry.finalize_group(CREATOR, group_id, keys.public_key)
        assert result.averaged
        assert keys.decrypt(result.encrypted_sum) == 100

    def test_no_submissions(self, registry, group, keys):
        result = registry.finalize_group(CREATOR, group, keys.public_key)
        assert result.count == 0
        assert keys.decrypt(result.encrypted_sum) == 0

    def test_no_submissions_with_average(self, group_id, keys, clock):
        registry = ScoreGroupRegistry(clock=clock, publish_average=True)
        registry.create_group(CREATOR, group_id)
        result = registry.finalize_group(CREATOR, group_id, keys.public_key)
        assert not result.averaged
        assert keys.decrypt(result.encrypted_sum) == 0

    def test_only_creator_finalizes(self, registry, group, keys):
        with pytest.raises(AuthorizationError, match="Not group owner"):
            registry.finalize_group("alice", group, keys.public_key)
        assert not registry.is_finalized(group)

    def test_finalize_twice(self, registry, group, keys):
        registry.finalize_group(CREATOR, group, keys.public_key)
        with pytest.raises(CollectionFinalizedError):
            registry.finalize_group(CREATOR, group, keys.public_key)

    def test_finalize_absent_group(self, registry, group_id, keys):
        with pytest.raises(CollectionNotFoundError):
            registry.finalize_group(CREATOR, group_id, keys.public_key)

    def test_finalize_with_foreign_key(self, registry, group, keys, other_keys):
        submit_all(registry, group, keys)
        with pytest.raises(KeyMismatchError):
            registry.finalize_group(CREATOR, group, other_keys.public_key)
        assert registry.get_group_details(group).active

        result = registry.finalize_group(CREATOR, group, keys.public_key)
        assert result.public_key == keys.public_key

    def test_invalid_public_key(self, registry, group, keys):
        submit_all(registry, group, keys)
        with pytest.raises(MalformedInputError):
            registry.finalize_group(CREATOR, group, PublicKey.from_ints(1, 1))
        assert registry.get_group_details(group).active

    def test_timestamps(self, registry, group, keys, clock):
        created = clock()
        clock.advance(90)
        result = registry.finalize_group(CREATOR, group, keys.public_key)
        assert result.timestamp == created
        assert result.finalized_at == created + 90


class TestQueries:

    def test_result_before_finalization(self, registry, group):
        with pytest.raises(NotFinalizedError, match="Not finalized"):
            registry.get_result(group)

    def test_result_is_stable(self, registry, group, keys):
        submit_all(registry, group, keys)
        result = registry.finalize_group(CREATOR, group, keys.public_key)
        assert registry.get_result(group) == result
        assert registry.is_finalized(group)

    def test_details_after_finalization(self, registry, group, keys):
        submit_all(registry, group, keys)
        registry.finalize_group(CREATOR, group, keys.public_key)

        details = registry.get_group_details(group)
        assert not details.active
        assert details.participant_count == 3
        assert registry.has_submitted(group, "bob")

    def test_details_of_absent_group(self, registry, group_id):
        with pytest.raises(CollectionNotFoundError):
            registry.get_group_details(group_id)
        assert not registry.is_finalized(group_id)
