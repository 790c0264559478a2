from unittest.mock import patch

import pytest

from userbase.core.errors import (
    AuthorizationError,
    ConflictError,
    DependencyError,
    NoActiveChallenge,
    ValidationError,
)
from userbase.db.models import AuthChallenge, Identity
from userbase.services.hive_client import HiveAccountNotFound
from userbase.services.identity_store import IdentityStore
from userbase.services.linking import IdentityLinker


@pytest.fixture
def linker(db, settings, hive):
    return IdentityLinker(db, settings, hive)


class TestHiveLinking:
    @pytest.mark.asyncio
    async def test_challenge_requires_chain_account(self, linker, make_user):
        user = make_user("app-user")
        with pytest.raises(HiveAccountNotFound):
            await linker.issue_challenge(user.id, "hive", "ghost")

    @pytest.mark.asyncio
    async def test_verify_links_and_consumes(self, db, linker, hive, hive_key, make_user):
        user = make_user("app-user")
        hive.add_account("alice", posting_keys=[hive_key.public_key])

        challenge = await linker.issue_challenge(user.id, "hive", "@Alice")
        identity = await linker.verify_and_link(
            user.id, "hive", "alice", hive_key.sign(challenge.message), hive_key.public_key
        )

        assert identity.handle == "alice"
        assert identity.is_primary is True
        db.expire_all()
        assert db.get(AuthChallenge, challenge.id).consumed_at is not None

    @pytest.mark.asyncio
    async def test_rejected_key_leaves_challenge_unconsumed(self, db, linker, hive, hive_key, other_hive_key, make_user):
        user = make_user("app-user")
        hive.add_account("alice", posting_keys=[hive_key.public_key])
        challenge = await linker.issue_challenge(user.id, "hive", "alice")

        with pytest.raises(AuthorizationError, match="Public key not authorized for posting"):
            await linker.verify_and_link(
                user.id, "hive", "alice", other_hive_key.sign(challenge.message), other_hive_key.public_key
            )

        db.expire_all()
        assert db.get(AuthChallenge, challenge.id).consumed_at is None
        assert IdentityStore(db).find("hive", "alice") is None

    @pytest.mark.asyncio
    async def test_conflict_leaves_challenge_unconsumed(self, db, linker, hive, hive_key, make_user):
        owner = make_user("owner")
        user = make_user("app-user")
        IdentityStore(db).upsert(owner.id, "hive", "alice")
        db.commit()
        hive.add_account("alice", posting_keys=[hive_key.public_key])
        challenge = await linker.issue_challenge(user.id, "hive", "alice")

        with pytest.raises(ConflictError) as exc_info:
            await linker.verify_and_link(
                user.id, "hive", "alice", hive_key.sign(challenge.message), hive_key.public_key
            )

        assert exc_info.value.extra == {"merge_required": True, "existing_user_id": owner.id}
        db.expire_all()
        assert db.get(AuthChallenge, challenge.id).consumed_at is None

    @pytest.mark.asyncio
    async def test_verify_without_challenge(self, linker, hive_key, make_user):
        user = make_user("app-user")
        with pytest.raises(NoActiveChallenge):
            await linker.verify_and_link(user.id, "hive", "alice", hive_key.sign("x"), hive_key.public_key)

    @pytest.mark.asyncio
    async def test_advertised_identities_are_linked(self, db, linker, hive, hive_key, wallet, make_user):
        user = make_user("app-user")
        squatter = make_user("squatter")
        taken = "0x" + "a" * 40
        IdentityStore(db).upsert(squatter.id, "evm", taken)
        db.commit()
        hive.add_account("alice", posting_keys=[hive_key.public_key], json_metadata={
            "extensions": {
                "wallets": {"primary_wallet": wallet.address, "additional": [taken]},
                "farcaster": {"fid": 42, "username": "alice.eth"},
            },
        })
        challenge = await linker.issue_challenge(user.id, "hive", "alice")

        await linker.verify_and_link(user.id, "hive", "alice", hive_key.sign(challenge.message), hive_key.public_key)

        owned = {(i.type, i.identifier) for i in IdentityStore(db).list_for_user(user.id)}
        assert owned == {("hive", "alice"), ("evm", wallet.address.lower()), ("farcaster", "42")}
        assert IdentityStore(db).find("evm", taken).user_id == squatter.id
        assert IdentityStore(db).find("farcaster", "42").handle == "alice.eth"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("extensions", [
        {"wallets": ["0x52908400098527886E0F7030069857D2E4169EE7"]},
        {"farcaster": "1234"},
        {"wallets": "0x52908400098527886E0F7030069857D2E4169EE7", "farcaster": [1234]},
    ])
    async def test_odd_profile_metadata_still_links(self, db, linker, hive, hive_key, make_user, extensions):
        user = make_user("app-user")
        hive.add_account("alice", posting_keys=[hive_key.public_key], json_metadata={"extensions": extensions})
        challenge = await linker.issue_challenge(user.id, "hive", "alice")

        identity = await linker.verify_and_link(
            user.id, "hive", "alice", hive_key.sign(challenge.message), hive_key.public_key
        )

        assert identity.handle == "alice"
        owned = {(i.type, i.identifier) for i in IdentityStore(db).list_for_user(user.id)}
        assert owned == {("hive", "alice")}

    @pytest.mark.asyncio
    async def test_advertised_farcaster_is_normalized_and_tagged(self, db, linker, hive, hive_key, make_user):
        user = make_user("app-user")
        custody = "0x52908400098527886E0F7030069857D2E4169EE7"
        hive.add_account("alice", posting_keys=[hive_key.public_key], json_metadata={
            "extensions": {"farcaster": {"fid": " 42 ", "username": "Alice.eth", "custody_address": custody}},
        })
        challenge = await linker.issue_challenge(user.id, "hive", "alice")

        await linker.verify_and_link(user.id, "hive", "alice", hive_key.sign(challenge.message), hive_key.public_key)

        farcaster = IdentityStore(db).find("farcaster", "42")
        assert farcaster.user_id == user.id
        assert farcaster.handle == "alice.eth"
        assert farcaster.address == custody.lower()
        assert farcaster.metadata_["trust"] == "self_reported"
        assert farcaster.metadata_["source"] == "hive"

    @pytest.mark.asyncio
    async def test_non_numeric_advertised_fid_is_skipped(self, db, linker, hive, hive_key, make_user):
        user = make_user("app-user")
        hive.add_account("alice", posting_keys=[hive_key.public_key], json_metadata={
            "extensions": {"farcaster": {"fid": "alice"}},
        })
        challenge = await linker.issue_challenge(user.id, "hive", "alice")

        await linker.verify_and_link(user.id, "hive", "alice", hive_key.sign(challenge.message), hive_key.public_key)

        assert db.query(Identity).filter(Identity.type == "farcaster").count() == 0

    @pytest.mark.asyncio
    async def test_advertised_linking_failure_keeps_the_hive_link(self, db, linker, hive, hive_key, make_user):
        user = make_user("app-user")
        hive.add_account("alice", posting_keys=[hive_key.public_key])
        challenge = await linker.issue_challenge(user.id, "hive", "alice")

        with patch.object(linker, "link_advertised_identities", side_effect=DependencyError("Failed to link identity")):
            identity = await linker.verify_and_link(
                user.id, "hive", "alice", hive_key.sign(challenge.message), hive_key.public_key
            )

        assert identity.handle == "alice"
        db.expire_all()
        assert db.get(AuthChallenge, challenge.id).consumed_at is not None


class TestEvmLinking:
    @pytest.mark.asyncio
    async def test_wallet_signature(self, linker, wallet, make_user):
        user = make_user("app-user")
        challenge = await linker.issue_challenge(user.id, "evm", wallet.address)
        assert f"Address: {wallet.address.lower()}" in challenge.message

        identity = await linker.verify_and_link(user.id, "evm", wallet.address, wallet.sign(challenge.message))

        assert identity.address == wallet.address.lower()

    @pytest.mark.asyncio
    async def test_invalid_address(self, linker, make_user):
        user = make_user("app-user")
        with pytest.raises(ValidationError):
            await linker.issue_challenge(user.id, "evm", "0x1234")

    @pytest.mark.asyncio
    async def test_farcaster_has_no_challenge(self, linker, make_user):
        user = make_user("app-user")
        with pytest.raises(ValidationError, match="Unsupported identity type"):
            await linker.issue_challenge(user.id, "farcaster", "42")


class TestSelfReported:
    def test_farcaster_is_tagged(self, linker, make_user):
        user = make_user("app-user")

        identity = linker.link_self_reported(user.id, "farcaster", 42, handle=" Alice ", metadata={"pfp": "x"})

        assert identity.external_id == "42"
        assert identity.handle == "alice"
        assert identity.metadata_ == {"pfp": "x", "trust": "self_reported"}

    @pytest.mark.parametrize("identity_type,external_id,message", [
        (None, "42", "Missing identity type"),
        ("hive", "alice", "Unsupported identity type"),
        ("farcaster", "", "Farcaster fid is required"),
        ("farcaster", None, "Farcaster fid is required"),
    ])
    def test_rejects(self, linker, make_user, identity_type, external_id, message):
        user = make_user("app-user")
        with pytest.raises(ValidationError, match=message):
            linker.link_self_reported(user.id, identity_type, external_id)


class TestFarcasterVerifiedAddress:
    def test_requires_owned_fid(self, linker, wallet, make_user):
        user = make_user("app-user")
        with pytest.raises(AuthorizationError, match="You must link your Farcaster account first"):
            linker.link_farcaster_verified_address(user.id, wallet.address, "42")

    def test_links_address(self, db, linker, wallet, make_user):
        user = make_user("app-user")
        linker.link_self_reported(user.id, "farcaster", "42")

        identity = linker.link_farcaster_verified_address(user.id, wallet.address, 42)

        assert identity.address == wallet.address.lower()
        assert identity.metadata_ == {"verified_via": "farcaster", "farcaster_fid": "42"}
        assert db.query(Identity).filter(Identity.user_id == user.id).count() == 2

    @pytest.mark.parametrize("address,fid,message", [
        (None, "42", "Missing or invalid address"),
        ("0xabc", None, "Missing farcaster_fid"),
        ("0xabc", "42", "Invalid Ethereum address"),
    ])
    def test_rejects(self, linker, make_user, address, fid, message):
        user = make_user("app-user")
        with pytest.raises(ValidationError, match=message):
            linker.link_farcaster_verified_address(user.id, address, fid)
