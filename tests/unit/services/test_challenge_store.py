from datetime import timedelta

import pytest

from userbase.core.errors import AuthError, ChallengeExpired, NoActiveChallenge
from userbase.db.base import utcnow
from userbase.services.challenge_store import ChallengeStore, build_challenge_message


def test_message_layout():
    issued_at = utcnow()
    message = build_challenge_message("u-1", "Hive account", "Hive: @alice", "n0nce", issued_at)

    lines = message.split("\n")
    assert lines[0] == "Skatehive wants to link your Hive account to your app account."
    assert "User ID: u-1" in lines
    assert "Hive: @alice" in lines
    assert "Nonce: n0nce" in lines
    assert f"Issued at: {issued_at.isoformat()}" in lines
    assert lines[-1] == "If you did not request this, you can ignore this message."


class TestChallengeStore:
    def test_issue_then_get_active(self, db, make_user):
        user = make_user("alice")
        store = ChallengeStore(db)

        issued = store.issue(user.id, "hive", "alice", "Hive account", "Hive: @alice")
        active = store.get_active(user.id, "hive", "alice")

        assert active.id == issued.id
        assert active.consumed_at is None
        assert "Hive: @alice" in active.message

    def test_newest_challenge_wins(self, db, make_user):
        user = make_user("alice")
        store = ChallengeStore(db)

        first = store.issue(user.id, "evm", "0xabc")
        first.created_at = utcnow() - timedelta(minutes=1)
        db.commit()
        second = store.issue(user.id, "evm", "0xabc")

        assert store.get_active(user.id, "evm", "0xabc").id == second.id

    def test_nothing_issued(self, db, make_user):
        user = make_user("alice")
        with pytest.raises(NoActiveChallenge):
            ChallengeStore(db).get_active(user.id, "hive", "alice")

    def test_scope_is_per_identifier(self, db, make_user):
        user = make_user("alice")
        store = ChallengeStore(db)
        store.issue(user.id, "hive", "alice")

        with pytest.raises(NoActiveChallenge):
            store.get_active(user.id, "hive", "bob")

    def test_expired(self, db, make_user):
        user = make_user("alice")
        store = ChallengeStore(db)
        challenge = store.issue(user.id, "hive", "alice")
        challenge.expires_at = utcnow() - timedelta(seconds=1)
        db.commit()

        with pytest.raises(ChallengeExpired):
            store.get_active(user.id, "hive", "alice")

    def test_consume_is_single_use(self, db, make_user):
        user = make_user("alice")
        store = ChallengeStore(db)
        challenge = store.issue(user.id, "hive", "alice")

        store.consume(challenge)
        db.commit()

        with pytest.raises(AuthError, match="Challenge already used or expired"):
            store.consume(challenge)
        with pytest.raises(NoActiveChallenge):
            store.get_active(user.id, "hive", "alice")

    def test_consume_refuses_expired_row(self, db, make_user):
        user = make_user("alice")
        store = ChallengeStore(db)
        challenge = store.issue(user.id, "hive", "alice")
        challenge.expires_at = utcnow() - timedelta(seconds=1)
        db.commit()

        with pytest.raises(AuthError):
            store.consume(challenge)

    def test_rolled_back_consumption_leaves_challenge_usable(self, db, make_user):
        user = make_user("alice")
        store = ChallengeStore(db)
        challenge = store.issue(user.id, "hive", "alice")

        store.consume(challenge)
        db.rollback()

        assert store.get_active(user.id, "hive", "alice").id == challenge.id
