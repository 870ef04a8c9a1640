"""Unit tests for auth/store.py -- TokenStore queries and mutations.

Covers:
- create_user persists nested token pairs; validation runs before SQL
- get_user_by_username / get_user_by_uuid load owned pairs; None on miss
- get_pair returns the pair with its owner from one query; None on miss
- create_pair refuses an existing client token
- upsert_pair inserts, overwrites, and moves a pair between users
- rotate_access_token is a compare-and-swap
- invalidate_user_pairs / invalidate_pair scope
"""

import pytest
from sqlalchemy import event
from sqlalchemy.exc import IntegrityError

from auth.models import TokenPair
from auth.passwords import new_user
from auth.store import TokenStore


@pytest.fixture
def bob(store: TokenStore):
    user = new_user("bob", "pw")
    user.token_pairs = [
        TokenPair(client_token="bob-c1", access_token="bob-a1"),
        TokenPair(client_token="bob-c2", access_token="bob-a2", valid=False),
    ]
    store.create_user(user)
    return user


class TestUsers:
    def test_create_user_persists_pairs(self, store, bob):
        loaded = store.get_user_by_username("bob")
        assert loaded is not None
        assert loaded.uuid == bob.uuid
        assert [(p.client_token, p.valid) for p in loaded.token_pairs] == [("bob-c1", True), ("bob-c2", False)]
        assert all(p.user_uuid == bob.uuid for p in loaded.token_pairs)

    def test_password_material_round_trips_as_bytes(self, store, bob):
        loaded = store.get_user_by_uuid(bob.uuid)
        assert loaded.password_salt == bob.password_salt
        assert loaded.password_hash == bob.password_hash

    def test_missing_user_returns_none(self, store):
        assert store.get_user_by_username("nobody") is None
        assert store.get_user_by_uuid("00000000-0000-0000-0000-000000000000") is None

    def test_duplicate_username_rejected(self, store, bob):
        with pytest.raises(IntegrityError):
            store.create_user(new_user("bob", "pw", player_name="Bobby"))

    def test_unknown_language_rejected(self, store):
        with pytest.raises(ValueError, match="preferred language"):
            store.create_user(new_user("carol", "pw", preferred_language="xx"))
        assert store.get_user_by_username("carol") is None

    def test_unknown_skin_model_rejected(self, store):
        user = new_user("carol", "pw")
        user.skin_model = "huge"
        with pytest.raises(ValueError, match="skin model"):
            store.create_user(user)


class TestGetPair:
    def test_loads_owner(self, store, bob):
        found = store.get_pair("bob-c1")
        assert found is not None
        assert found.pair.access_token == "bob-a1"
        assert found.pair.valid is True
        assert found.user.username == "bob"
        assert found.user.uuid == bob.uuid

    def test_miss_returns_none(self, store, bob):
        assert store.get_pair("nope") is None


class TestCreateAndUpsert:
    def test_create_pair(self, store, bob):
        store.create_pair(bob.uuid, "bob-c3", "bob-a3")
        assert store.get_pair("bob-c3").pair.access_token == "bob-a3"

    def test_create_pair_refuses_existing_client_token(self, store, bob):
        with pytest.raises(IntegrityError):
            store.create_pair(bob.uuid, "bob-c1", "other")
        assert store.get_pair("bob-c1").pair.access_token == "bob-a1"

    def test_upsert_inserts_new(self, store, bob):
        pair = store.upsert_pair(bob.uuid, "fresh", "a-fresh")
        assert pair.valid is True
        assert store.get_pair("fresh").user.uuid == bob.uuid

    def test_upsert_overwrites_and_revalidates(self, store, bob):
        store.upsert_pair(bob.uuid, "bob-c2", "bob-a2-new")
        found = store.get_pair("bob-c2")
        assert found.pair.access_token == "bob-a2-new"
        assert found.pair.valid is True
        assert len(store.get_user_by_uuid(bob.uuid).token_pairs) == 2

    def test_upsert_moves_pair_to_new_owner(self, store, bob, alice):
        store.upsert_pair(alice.uuid, "bob-c1", "alice-a1")
        assert store.get_pair("bob-c1").user.uuid == alice.uuid
        assert [p.client_token for p in store.get_user_by_uuid(bob.uuid).token_pairs] == ["bob-c2"]

    def test_upsert_retries_after_concurrent_insert(self, tmp_path):
        """Another writer inserts the client token between our SELECT and INSERT.

        The INSERT hits the primary key, the transaction rolls back, and the
        retry takes the update path: the caller ends up owning the pair with
        its own access token.
        """
        url = f"sqlite:///{tmp_path / 'race.db'}"
        store, rival = TokenStore(url), TokenStore(url)
        try:
            alice, bob = new_user("alice", "secret"), new_user("bob", "pw")
            store.create_user(alice)
            store.create_user(bob)
            statements, rival_ran = [], []

            def race(conn, cursor, statement, parameters, context, executemany):
                if statement.startswith("INSERT INTO token_pairs") and not rival_ran:
                    rival.create_pair(bob.uuid, "device", "bob-access")
                    rival_ran.append(True)
                statements.append(statement)

            event.listen(store.engine, "before_cursor_execute", race)
            pair = store.upsert_pair(alice.uuid, "device", "alice-access")

            assert rival_ran
            assert any(s.startswith("UPDATE token_pairs") for s in statements)
            assert pair.access_token == "alice-access"
            found = store.get_pair("device")
            assert found.pair.access_token == "alice-access"
            assert found.pair.valid is True
            assert found.user.uuid == alice.uuid
        finally:
            store.close()
            rival.close()


class TestRotate:
    def test_swap_when_expected_matches(self, store, bob):
        assert store.rotate_access_token("bob-c1", "bob-a1", "bob-a1b") is True
        assert store.get_pair("bob-c1").pair.access_token == "bob-a1b"

    def test_second_swap_with_stale_token_fails(self, store, bob):
        assert store.rotate_access_token("bob-c1", "bob-a1", "first") is True
        assert store.rotate_access_token("bob-c1", "bob-a1", "second") is False
        assert store.get_pair("bob-c1").pair.access_token == "first"

    def test_rotate_marks_valid(self, store, bob):
        assert store.rotate_access_token("bob-c2", "bob-a2", "bob-a2b") is True
        assert store.get_pair("bob-c2").pair.valid is True

    def test_unknown_client_token(self, store, bob):
        assert store.rotate_access_token("nope", "bob-a1", "x") is False


class TestInvalidate:
    def test_invalidate_user_pairs(self, store, bob, alice):
        store.create_pair(alice.uuid, "alice-c1", "alice-a1")
        assert store.invalidate_user_pairs(bob.uuid) == 2
        assert not any(p.valid for p in store.get_user_by_uuid(bob.uuid).token_pairs)
        assert store.get_pair("alice-c1").pair.valid is True

    def test_invalidate_pair(self, store, bob):
        store.create_pair(bob.uuid, "bob-c3", "bob-a3")
        assert store.invalidate_pair("bob-c1") is True
        assert store.get_pair("bob-c1").pair.valid is False
        assert store.get_pair("bob-c3").pair.valid is True

    def test_invalidate_pair_miss(self, store):
        assert store.invalidate_pair("nope") is False

    def test_invalidate_owner_pairs(self, store, bob, alice):
        store.create_pair(alice.uuid, "alice-c1", "alice-a1")
        assert store.invalidate_owner_pairs("bob-c1") == 2
        assert not any(p.valid for p in store.get_user_by_uuid(bob.uuid).token_pairs)
        assert store.get_pair("alice-c1").pair.valid is True

    def test_invalidate_owner_pairs_follows_moved_token(self, store, bob, alice):
        store.create_pair(alice.uuid, "alice-c1", "alice-a1")
        store.create_pair(bob.uuid, "bob-c3", "bob-a3")
        store.upsert_pair(alice.uuid, "bob-c1", "alice-a2")
        assert store.invalidate_owner_pairs("bob-c1") == 2
        assert store.get_pair("bob-c3").pair.valid is True
        assert not any(p.valid for p in store.get_user_by_uuid(alice.uuid).token_pairs)

    def test_invalidate_owner_pairs_miss(self, store, bob):
        assert store.invalidate_owner_pairs("nope") == 0
        assert store.get_pair("bob-c1").pair.valid is True


def test_ping(store):
    assert store.ping() is True
