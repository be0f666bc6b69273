"""
Tests for role resolution, permission checks and privacy redaction.
"""
from uuid import uuid4

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient
from sqlalchemy import select

from giftcircle.main import app
from giftcircle.models.models import Friendship, PrivacyLevelEnum, User, Wishlist, WishlistEditor
from giftcircle.services.permissions import (
    Permission,
    PermissionContext,
    WishlistRole,
    get_user_permissions,
    get_user_wishlist_role,
    has_permission,
    require_permission,
    resolve_wishlist_access,
)
from giftcircle.services.privacy import (
    are_friends,
    check_friendships,
    redact_claims_user_data,
    redact_multiple_users,
    redact_user_data,
)


async def _seed(session_factory, privacy: str = PrivacyLevelEnum.PRIVATE.value) -> dict[str, int]:
    async with session_factory() as db:
        users = [User(email=f"{name}-{uuid4().hex}@example.com", hashed_password="x", name=name)
                 for name in ("owner", "editor", "friend", "stranger")]
        db.add_all(users)
        await db.flush()
        owner, editor, friend, stranger = users
        wishlist = Wishlist(owner_id=owner.id, title="List", permalink=f"list-{uuid4().hex[:8]}", privacy=privacy)
        db.add(wishlist)
        await db.flush()
        db.add(WishlistEditor(wishlist_id=wishlist.id, user_id=editor.id, can_delete=False))
        db.add(Friendship(user_id=owner.id, friend_id=friend.id))
        db.add(Friendship(user_id=friend.id, friend_id=owner.id))
        await db.commit()
        return {
            "owner": owner.id,
            "editor": editor.id,
            "friend": friend.id,
            "stranger": stranger.id,
            "wishlist": wishlist.id,
        }


class TestRoleResolution:
    """Roles derive from ownership, editor grants, privacy and friendship."""

    @pytest.mark.parametrize(
        ("privacy", "expected"),
        [
            (PrivacyLevelEnum.PRIVATE.value, {"owner": "owner", "editor": "collaborator", "friend": None, "stranger": None}),
            (PrivacyLevelEnum.FRIENDS_ONLY.value, {"owner": "owner", "editor": "collaborator", "friend": "friend", "stranger": None}),
            (PrivacyLevelEnum.PUBLIC.value, {"owner": "owner", "editor": "collaborator", "friend": "friend", "stranger": "viewer"}),
        ],
    )
    async def test_roles_by_privacy(self, session_factory, privacy, expected):
        ids = await _seed(session_factory, privacy)
        async with session_factory() as db:
            for who, role in expected.items():
                resolved = await get_user_wishlist_role(db, ids[who], ids["wishlist"])
                assert (resolved.value if resolved else None) == role, who

    async def test_anonymous_only_sees_public(self, session_factory):
        ids = await _seed(session_factory, PrivacyLevelEnum.PUBLIC.value)
        async with session_factory() as db:
            assert await get_user_wishlist_role(db, None, ids["wishlist"]) is WishlistRole.VIEWER
            wishlist = await db.get(Wishlist, ids["wishlist"])
            wishlist.privacy = PrivacyLevelEnum.FRIENDS_ONLY.value
            await db.commit()
            assert await get_user_wishlist_role(db, None, ids["wishlist"]) is None

    async def test_deleted_wishlist_owner_only(self, session_factory):
        ids = await _seed(session_factory, PrivacyLevelEnum.PUBLIC.value)
        async with session_factory() as db:
            wishlist = await db.get(Wishlist, ids["wishlist"])
            wishlist.is_deleted = True
            await db.commit()
            assert (await resolve_wishlist_access(db, wishlist, ids["owner"])).role is WishlistRole.OWNER
            assert await resolve_wishlist_access(db, wishlist, ids["editor"]) is None
            assert await resolve_wishlist_access(db, wishlist, ids["friend"]) is None

    async def test_collaborator_delete_grant(self, session_factory):
        ids = await _seed(session_factory)
        async with session_factory() as db:
            context = PermissionContext(ids["editor"], ids["wishlist"])
            assert not await has_permission(db, context, Permission.ITEMS_DELETE)
            result = await db.execute(select(WishlistEditor).where(WishlistEditor.user_id == ids["editor"]))
            editor = result.scalar_one()
            editor.can_delete = True
            await db.commit()
            assert await has_permission(db, context, Permission.ITEMS_DELETE)
            assert not await has_permission(db, context, Permission.WISHLISTS_DELETE)


class TestPermissionChecks:
    """Global and wishlist-scoped permission checks."""

    async def test_global_permissions_need_a_user(self, session_factory):
        ids = await _seed(session_factory)
        async with session_factory() as db:
            assert await has_permission(db, PermissionContext(ids["stranger"]), Permission.FRIENDS_INVITE)
            assert not await has_permission(db, PermissionContext(None), Permission.FRIENDS_INVITE)
            assert not await has_permission(db, PermissionContext(ids["stranger"]), Permission.ITEMS_WRITE)

    async def test_missing_wishlist_denies(self, session_factory):
        ids = await _seed(session_factory)
        async with session_factory() as db:
            assert not await has_permission(db, PermissionContext(ids["owner"], 999999), Permission.ITEMS_READ)

    async def test_require_permission_raises_403(self, session_factory):
        ids = await _seed(session_factory)
        async with session_factory() as db:
            with pytest.raises(HTTPException) as exc_info:
                await require_permission(
                    db,
                    PermissionContext(ids["friend"], ids["wishlist"]),
                    Permission.ITEMS_WRITE,
                )
            assert exc_info.value.status_code == 403
            assert "items:write" in exc_info.value.detail

    async def test_user_permissions_listing(self, session_factory):
        ids = await _seed(session_factory, PrivacyLevelEnum.FRIENDS_ONLY.value)
        async with session_factory() as db:
            friend_permissions = await get_user_permissions(db, PermissionContext(ids["friend"], ids["wishlist"]))
            assert Permission.ITEMS_CLAIM in friend_permissions
            assert Permission.ITEMS_WRITE not in friend_permissions
            stranger_permissions = await get_user_permissions(db, PermissionContext(ids["stranger"], ids["wishlist"]))
            assert Permission.ITEMS_READ not in stranger_permissions


class TestPrivacy:
    """Friendship lookups and redaction helpers."""

    async def test_are_friends(self, session_factory):
        ids = await _seed(session_factory)
        async with session_factory() as db:
            assert await are_friends(db, ids["owner"], ids["friend"])
            assert await are_friends(db, ids["friend"], ids["owner"])
            assert await are_friends(db, ids["stranger"], ids["stranger"])
            assert not await are_friends(db, ids["owner"], ids["stranger"])
            assert not await are_friends(db, None, ids["owner"])

    async def test_check_friendships_includes_self(self, session_factory):
        ids = await _seed(session_factory)
        async with session_factory() as db:
            result = await check_friendships(db, ids["owner"], [ids["owner"], ids["friend"], ids["stranger"]])
            assert result == {ids["owner"]: True, ids["friend"]: True, ids["stranger"]: False}
            anonymous = await check_friendships(db, None, [ids["owner"]])
            assert anonymous == {ids["owner"]: False}

    def test_redact_user_data(self):
        user = {"id": 1, "name": "Ann", "image": None}
        assert redact_user_data(user, True) == user
        assert redact_user_data(user, False) is None
        assert redact_multiple_users([user, {"id": 2, "name": "Bo", "image": None}], {1: True}) == [user, None]

    async def test_redact_claims(self, session_factory):
        ids = await _seed(session_factory)
        claims = [
            {"id": 1, "user_id": ids["owner"], "user": {"id": ids["owner"], "name": "owner", "image": None}},
            {"id": 2, "user_id": ids["stranger"], "user": {"id": ids["stranger"], "name": "stranger", "image": None}},
        ]
        async with session_factory() as db:
            redacted = await redact_claims_user_data(db, claims, ids["friend"])
        assert redacted[0]["user"]["name"] == "owner"
        assert redacted[1]["user"] is None
        assert claims[1]["user"] is not None


class TestPermissionsEndpoint:
    """GET /permissions."""

    def test_requires_auth(self):
        assert TestClient(app).get("/permissions").status_code == 401

    def test_global_and_wishlist_permissions(self):
        client = TestClient(app)
        email = f"user-{uuid4().hex}@example.com"
        user = client.post("/auth/register", json={"email": email, "password": "SecurePass123!"}).json()
        wishlist = client.post("/wishlists", json={"title": "Mine"}).json()

        global_view = client.get("/permissions").json()
        assert global_view["role"] is None
        assert sorted(global_view["permissions"]) == ["friends:invite", "friends:manage"]

        by_permalink = client.get("/permissions", params={"wishlist": wishlist["permalink"]}).json()
        by_id = client.get("/permissions", params={"wishlist": str(wishlist["id"])}).json()
        assert by_permalink["role"] == by_id["role"] == "owner"
        assert "members:invite" in by_permalink["permissions"]
        assert by_permalink["user_id"] == user["id"]
        assert client.get("/permissions", params={"wishlist": "nope"}).status_code == 404

    def test_wishlist_id_out_of_range(self):
        client = TestClient(app)
        email = f"user-{uuid4().hex}@example.com"
        client.post("/auth/register", json={"email": email, "password": "SecurePass123!"})
        assert client.get("/permissions", params={"wishlist": "9" * 30}).status_code == 404
