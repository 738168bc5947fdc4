"""
test_groups.py — Invite tokens, session bootstrap and group membership.

Run with:
    pytest tests/test_groups.py -v
"""

from __future__ import annotations

import pytest

from groupsos.core.errors import (
    AlreadyMember,
    NotFoundError,
    NotFoundOrForbidden,
    ValidationError,
)
from groupsos.core.tokens import (
    TOKEN_ALPHABET,
    TOKEN_LENGTH,
    generate_group_token,
    is_well_formed_token,
)
from groupsos.groups.service import DEFAULT_NICKNAME, GroupService, normalize_token


@pytest.fixture
def groups(store):
    return GroupService(store, store)


class TestTokens:

    def test_shape(self):
        for _ in range(50):
            token = generate_group_token()
            assert len(token) == TOKEN_LENGTH
            assert set(token) <= set(TOKEN_ALPHABET)

    def test_tokens_vary(self):
        assert len({generate_group_token() for _ in range(20)}) > 1

    @pytest.mark.parametrize("token,expected", [
        ("ABCD1234", True),
        ("abcd1234", False),
        ("ABCD123", False),
        ("ABCD12345", False),
        ("ABCD-234", False),
        ("", False),
    ])
    def test_well_formed(self, token, expected):
        assert is_well_formed_token(token) is expected

    def test_normalize(self):
        assert normalize_token("  abcd1234 ") == "ABCD1234"


class TestEnsureUser:

    @pytest.mark.asyncio
    async def test_mints_session(self, groups):
        user, session_id = await groups.ensure_user()
        assert session_id
        assert user.nickname == DEFAULT_NICKNAME
        assert user.session_id == session_id

    @pytest.mark.asyncio
    async def test_resolves_existing_session(self, groups):
        user, session_id = await groups.ensure_user()
        again, same = await groups.ensure_user(session_id)
        assert again.id == user.id
        assert same == session_id

    @pytest.mark.asyncio
    async def test_unknown_session_id_is_adopted(self, groups, store):
        user, session_id = await groups.ensure_user("client-chosen")
        assert session_id == "client-chosen"
        assert (await store.resolve("client-chosen")).id == user.id


class TestMembership:

    @pytest.mark.asyncio
    async def test_create_makes_creator_a_member(self, groups, store):
        alice, _ = await groups.ensure_user()

        group = await groups.create_group(alice.id, "  Family ", "Alice")

        assert group.name == "Family"
        assert await store.is_member(alice.id, group.id)
        assert (await store.get_user(alice.id)).nickname == "Alice"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name,nickname", [("   ", "Alice"), ("x" * 31, "Alice"), ("Family", "")])
    async def test_create_rejects_bad_input(self, groups, name, nickname):
        alice, _ = await groups.ensure_user()
        with pytest.raises(ValidationError):
            await groups.create_group(alice.id, name, nickname)

    @pytest.mark.asyncio
    async def test_join_normalizes_token(self, groups, store):
        alice, _ = await groups.ensure_user()
        bob, _ = await groups.ensure_user()
        group = await groups.create_group(alice.id, "Family", "Alice")

        joined = await groups.join_group(bob.id, f" {group.token.lower()} ", "Bob")

        assert joined.id == group.id
        members = await groups.list_members(alice.id, group.id)
        assert [m.nickname for m in members] == ["Alice", "Bob"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", ["ZZZZ9999", "short", "has space!"])
    async def test_join_unknown_token(self, groups, store, token):
        bob, _ = await groups.ensure_user()
        with pytest.raises(NotFoundError):
            await groups.join_group(bob.id, token, "Bob")
        assert (await store.get_user(bob.id)).nickname == DEFAULT_NICKNAME

    @pytest.mark.asyncio
    async def test_join_twice_keeps_nickname(self, groups, store):
        alice, _ = await groups.ensure_user()
        group = await groups.create_group(alice.id, "Family", "Alice")

        with pytest.raises(AlreadyMember):
            await groups.join_group(alice.id, group.token, "Renamed")
        assert (await store.get_user(alice.id)).nickname == "Alice"

    @pytest.mark.asyncio
    async def test_list_groups(self, groups):
        alice, _ = await groups.ensure_user()
        await groups.create_group(alice.id, "One", "Alice")
        await groups.create_group(alice.id, "Two", "Alice")

        summaries = await groups.list_groups(alice.id)

        assert sorted(g.name for g in summaries) == ["One", "Two"]
        assert all(g.member_count == 1 for g in summaries)

    @pytest.mark.asyncio
    async def test_members_hidden_from_outsiders(self, groups):
        alice, _ = await groups.ensure_user()
        carol, _ = await groups.ensure_user()
        group = await groups.create_group(alice.id, "Family", "Alice")

        with pytest.raises(NotFoundOrForbidden):
            await groups.list_members(carol.id, group.id)
