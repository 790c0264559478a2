from unittest.mock import patch

import pytest

from userbase.core.errors import AuthorizationError, CapacityError, ConflictError, NotFoundError
from userbase.db.models import UserStatus
from userbase.services.user_service import (
    UserService,
    derive_display_name,
    generated_avatar_url,
    hive_avatar_url,
)


@pytest.mark.parametrize("identifier,handle,expected", [
    ("jane.doe@example.com", None, "Jane Doe"),
    ("kick_flip-king@example.com", None, "Kick Flip King"),
    ("a.b.c.d.e@example.com", None, "A B C D"),
    (None, "alice", "Alice"),
    ("bob@example.com", "alice", "Alice"),
    (None, None, "Skater"),
    ("...@example.com", None, "Skater"),
])
def test_derive_display_name(identifier, handle, expected):
    assert derive_display_name(identifier, handle) == expected


def test_avatar_urls():
    assert hive_avatar_url("alice") == "https://images.hive.blog/u/alice/avatar"
    assert generated_avatar_url("a b").endswith("seed=a%20b")
    assert generated_avatar_url(None).endswith("seed=skatehive")


class TestAllocateHandle:
    def test_free_base_is_used_as_is(self, db):
        assert UserService(db).allocate_handle("Kick Flip") == "kick-flip"

    def test_empty_base_falls_back(self, db):
        assert UserService(db).allocate_handle("") == "skater"
        assert UserService(db).allocate_handle("!!!") == "skater"

    def test_collision_gets_suffix(self, db, make_user):
        make_user("alice")
        with patch("userbase.services.user_service.secrets.token_hex", return_value="beef"):
            assert UserService(db).allocate_handle("alice") == "alice-beef"

    def test_retries_colliding_suffixes(self, db, make_user):
        make_user("alice")
        make_user("alice-0000")
        with patch("userbase.services.user_service.secrets.token_hex", side_effect=["0000", "0001"]):
            assert UserService(db).allocate_handle("alice") == "alice-0001"

    def test_exhaustion(self, db, make_user):
        make_user("alice")
        make_user("alice-0000")
        with patch("userbase.services.user_service.secrets.token_hex", return_value="0000") as token_hex:
            with pytest.raises(CapacityError, match="Unable to generate unique handle"):
                UserService(db, suffix_attempts=3).allocate_handle("alice")
        assert token_hex.call_count == 3


class TestUsers:
    def test_create_user(self, db):
        user = UserService(db).create_user("alice", "Alice", None)
        db.commit()

        assert user.id
        assert user.status == UserStatus.ACTIVE.value
        assert user.onboarding_step == 0

    def test_duplicate_handle(self, db, make_user):
        make_user("alice")
        with pytest.raises(ConflictError, match="Handle already in use"):
            UserService(db).create_user("alice")

    def test_require_active_user(self, db, make_user):
        user = make_user("alice")
        assert UserService(db).require_active_user(user.id) is user

    def test_require_missing_user(self, db):
        with pytest.raises(NotFoundError, match="User not found"):
            UserService(db).require_active_user("missing")

    def test_require_suspended_user(self, db, make_user):
        user = make_user("alice", status=UserStatus.SUSPENDED.value)
        with pytest.raises(AuthorizationError, match="Account suspended"):
            UserService(db).require_active_user(user.id)

    def test_require_merged_user_points_at_target(self, db, make_user):
        target = make_user("bob")
        user = make_user(None, status=UserStatus.MERGED.value, merged_into_user_id=target.id)

        with pytest.raises(AuthorizationError) as exc_info:
            UserService(db).require_active_user(user.id)

        assert exc_info.value.to_dict() == {
            "error": "Account has been merged",
            "merged_into_user_id": target.id,
        }


class TestBackfillProfile:
    def test_fills_blanks(self, db, make_user):
        user = make_user(None, display_name=None)

        changed = UserService(db).backfill_profile(user, "Alice", "https://img/alice", "Alice")

        assert changed is True
        assert (user.display_name, user.avatar_url, user.handle) == ("Alice", "https://img/alice", "alice")

    def test_never_overwrites(self, db, make_user):
        user = make_user("alice", display_name="Original", avatar_url="https://img/original")

        changed = UserService(db).backfill_profile(user, "New", "https://img/new", "other")

        assert changed is False
        assert (user.display_name, user.avatar_url, user.handle) == ("Original", "https://img/original", "alice")

    def test_skips_taken_handle(self, db, make_user):
        make_user("alice")
        user = make_user(None, display_name="Someone")

        assert UserService(db).backfill_profile(user, handle="alice") is False
        assert user.handle is None


class TestEmailMethods:
    def test_add_and_find(self, db, make_user):
        user = make_user("alice")
        service = UserService(db)

        service.add_email_method(user.id, "alice@example.com")
        db.commit()

        assert service.find_email_method("alice@example.com").user_id == user.id
        assert service.email_for_user(user.id) == "alice@example.com"
        assert service.find_email_method("bob@example.com") is None

    def test_duplicate_email(self, db, make_user):
        alice = make_user("alice")
        bob = make_user("bob")
        service = UserService(db)
        service.add_email_method(alice.id, "shared@example.com")
        db.commit()

        with pytest.raises(ConflictError, match="Auth method already exists"):
            service.add_email_method(bob.id, "shared@example.com")
