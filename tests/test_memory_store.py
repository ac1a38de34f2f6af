"""Tests for the in-memory credential store and its JSON snapshot."""

import pytest

from mixtape.storage.errors import ConstraintViolation
from mixtape.storage.memory import MemoryStore


@pytest.fixture
def store(tmp_path):
    return MemoryStore(fs_root=str(tmp_path))


def test_create_user_normalizes_email(store):
    user = store.create_user("Alice@Example.COM", "alice", "hash")
    assert user.email == "alice@example.com"
    assert store.get_user_by_email("ALICE@example.com").id == user.id


def test_duplicate_email_is_rejected_case_insensitively(store):
    store.create_user("alice@example.com", "alice", "hash")
    with pytest.raises(ConstraintViolation) as excinfo:
        store.create_user("ALICE@example.com", "alice2", "hash")
    assert excinfo.value.field == "email"


def test_duplicate_username_is_rejected(store):
    store.create_user("alice@example.com", "alice", "hash")
    with pytest.raises(ConstraintViolation) as excinfo:
        store.create_user("bob@example.com", "alice", "hash")
    assert excinfo.value.field == "username"


def test_duplicate_federated_identity_is_rejected(store):
    store.create_user(
        "a@example.com", "aaa", federated_provider="google", federated_subject_id="g-1"
    )
    with pytest.raises(ConstraintViolation) as excinfo:
        store.create_user(
            "b@example.com", "bbb", federated_provider="google", federated_subject_id="g-1"
        )
    assert excinfo.value.field == "federated_identity"


def test_user_without_any_auth_method_is_rejected(store):
    with pytest.raises(ConstraintViolation) as excinfo:
        store.create_user("a@example.com", "aaa")
    assert excinfo.value.field == "auth_method"
    assert store.get_user_by_email("a@example.com") is None


def test_find_conflicting_user_matches_email_or_username(store):
    user = store.create_user("alice@example.com", "alice", "hash")
    assert store.find_conflicting_user("ALICE@example.com", "other").id == user.id
    assert store.find_conflicting_user("other@example.com", "alice").id == user.id
    assert store.find_conflicting_user("other@example.com", "other") is None


def test_link_keeps_password_and_backfills_only_empty_avatar(store):
    user = store.create_user("alice@example.com", "alice", "hash", avatar_url="https://img/a.png")
    linked = store.link_federated_identity(user.id, "google", "g-1", "https://img/google.png")
    assert linked.password_hash == "hash"
    assert linked.federated_provider == "google"
    assert linked.federated_subject_id == "g-1"
    assert linked.avatar_url == "https://img/a.png"
    assert store.get_user_by_provider("google", "g-1").id == user.id

    bare = store.create_user("bob@example.com", "bob", "hash")
    linked_bare = store.link_federated_identity(bare.id, "google", "g-2", "https://img/b.png")
    assert linked_bare.avatar_url == "https://img/b.png"


def test_link_rejects_identity_owned_by_another_user(store):
    store.create_user(
        "a@example.com", "aaa", federated_provider="google", federated_subject_id="g-1"
    )
    other = store.create_user("b@example.com", "bbb", "hash")
    with pytest.raises(ConstraintViolation):
        store.link_federated_identity(other.id, "google", "g-1")
    assert store.get_user(other.id).federated_provider is None


def test_link_missing_user_returns_none(store):
    assert store.link_federated_identity("missing", "google", "g-1") is None


def test_update_profile_and_delete(store):
    user = store.create_user("alice@example.com", "alice", "hash")
    updated = store.update_profile(user.id, bio="hi there")
    assert updated.bio == "hi there"
    assert updated.updated_at >= user.created_at
    assert store.delete_user(user.id) is True
    assert store.delete_user(user.id) is False
    assert store.get_user(user.id) is None


def test_list_users_paginates_newest_first_and_searches(store):
    for idx in range(5):
        store.create_user(f"u{idx}@example.com", f"user{idx}", "hash", bio="jazz" if idx % 2 else None)
    page = store.list_users(limit=2, offset=0)
    assert len(page) == 2
    assert store.count_users() == 5
    assert {u.username for u in store.list_users(limit=10, search="JAZZ")} == {"user1", "user3"}
    assert store.count_users(search="user4") == 1


def test_state_survives_reload(tmp_path):
    store = MemoryStore(fs_root=str(tmp_path))
    user = store.create_user("alice@example.com", "alice", "hash")
    store.link_federated_identity(user.id, "google", "g-1")

    reloaded = MemoryStore(fs_root=str(tmp_path))
    restored = reloaded.get_user(user.id)
    assert restored is not None
    assert restored.email == "alice@example.com"
    assert restored.password_hash == "hash"
    assert restored.federated_subject_id == "g-1"
    assert restored.created_at == user.created_at
    assert (tmp_path / "state" / "users.json").exists()


def test_store_without_fs_root_keeps_state_in_process():
    store = MemoryStore()
    store.create_user("alice@example.com", "alice", "hash")
    assert MemoryStore().get_user_by_email("alice@example.com") is None


def test_create_user_applies_nfkc_to_email(store):
    user = store.create_user("Ａlice@example.com", "alice", "hash")
    assert user.email == "alice@example.com"
    assert store.get_user_by_email("alice@example.com").id == user.id


class TestFailedSnapshot:
    """A write whose snapshot fails leaves the store as it was."""

    @pytest.fixture
    def broken_store(self, store, tmp_path, monkeypatch):
        # Writing to a directory path raises IsADirectoryError
        monkeypatch.setattr(store, "_state_path", lambda: tmp_path)
        return store

    def test_create_is_undone(self, broken_store):
        with pytest.raises(RuntimeError):
            broken_store.create_user("alice@example.com", "alice", "hash")
        assert broken_store.count_users() == 0
        assert broken_store.get_user_by_email("alice@example.com") is None

    def test_retry_after_failure_succeeds(self, store, tmp_path, monkeypatch):
        with monkeypatch.context() as patch:
            patch.setattr(store, "_state_path", lambda: tmp_path)
            with pytest.raises(RuntimeError):
                store.create_user("alice@example.com", "alice", "hash")
        user = store.create_user("alice@example.com", "alice", "hash")
        assert store.get_user(user.id) is not None

    def test_update_and_link_are_undone(self, store, tmp_path, monkeypatch):
        user = store.create_user("alice@example.com", "alice", "hash", bio="before")
        monkeypatch.setattr(store, "_state_path", lambda: tmp_path)
        with pytest.raises(RuntimeError):
            store.update_profile(user.id, bio="after")
        with pytest.raises(RuntimeError):
            store.link_federated_identity(user.id, "google", "g-1")
        current = store.get_user(user.id)
        assert current.bio == "before"
        assert current.federated_provider is None
        assert store.get_user_by_provider("google", "g-1") is None

    def test_delete_is_undone(self, store, tmp_path, monkeypatch):
        user = store.create_user("alice@example.com", "alice", "hash")
        monkeypatch.setattr(store, "_state_path", lambda: tmp_path)
        with pytest.raises(RuntimeError):
            store.delete_user(user.id)
        assert store.get_user(user.id) is not None
