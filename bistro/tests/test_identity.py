import asyncio
import pathlib
import sys
from datetime import timedelta

import pytest

sys.path.append(str(pathlib.Path(__file__).resolve().parents[2]))

from bistro.app.domain.identity import DEFAULT_ROLES, default_role_id  # noqa: E402
from bistro.app.errors import (  # noqa: E402
    AccountDisabledError,
    AlreadyExistsError,
    ConflictError,
    InvalidCredentialsError,
    InvalidTokenError,
    NotFoundError,
    PasswordMismatchError,
    RefreshTokenMismatchError,
    SessionRevokedError,
    TokenExpiredError,
    UnauthenticatedError,
    UnauthorizedError,
    ValidationError,
)
from bistro.app.security.passwords import (  # noqa: E402
    PasswordService,
    estimate_strength,
    has_sequential_chars,
    validate_password,
)
from bistro.app.security.tokens import TokenService, TokenType  # noqa: E402

PASSWORD = "Zq7!mXp2#Lw"
NEW_PASSWORD = "Hv9$Tk4@Rn"

pytestmark = pytest.mark.anyio


async def _login(identity, email="ana@bistro.example", password=PASSWORD, role_id=None):
    await identity.register(email, password, role_id)
    return await identity.login(email, password, "127.0.0.1", "pytest")


async def test_refresh_rotation_and_password_change(identity):
    first = await _login(identity)
    access1, refresh1 = first.tokens.access_token, first.tokens.refresh_token

    second = await identity.refresh(refresh1)
    access2, refresh2 = second.tokens.access_token, second.tokens.refresh_token
    assert second.tokens.session_id == first.tokens.session_id
    assert (access2, refresh2) != (access1, refresh1)

    with pytest.raises(RefreshTokenMismatchError) as exc:
        await identity.refresh(refresh1)
    assert exc.value.status_code == 401

    principal = await identity.validate(access2)
    assert principal.user.id == first.user.id
    assert principal.session_id == first.tokens.session_id
    # the rotated-out access token no longer matches the session
    with pytest.raises(UnauthenticatedError):
        await identity.validate(access1)

    await identity.change_password(first.user.id, PASSWORD, NEW_PASSWORD)
    with pytest.raises(UnauthenticatedError):
        await identity.validate(access2)
    with pytest.raises(UnauthenticatedError):
        await identity.refresh(refresh2)

    relogged = await identity.login("ana@bistro.example", NEW_PASSWORD)
    assert (await identity.validate(relogged.tokens.access_token)).user.id == first.user.id


async def test_register_rules(identity):
    user = await identity.register("  Ben@Bistro.Example ", PASSWORD)
    assert user.email == "ben@bistro.example"
    assert user.role_id == default_role_id("waitstaff")
    assert user.password_hash != PASSWORD

    with pytest.raises(AlreadyExistsError):
        await identity.register("ben@bistro.example", PASSWORD)
    with pytest.raises(ValidationError):
        await identity.register("not-an-email", PASSWORD)
    with pytest.raises(ValidationError):
        await identity.register("cy@bistro.example", "short")
    with pytest.raises(ValidationError):
        await identity.register("cy@bistro.example", PASSWORD, role_id="role_pilot")


async def test_login_failures_are_generic(identity):
    await identity.register("dee@bistro.example", PASSWORD)
    with pytest.raises(InvalidCredentialsError) as wrong:
        await identity.login("dee@bistro.example", NEW_PASSWORD)
    with pytest.raises(InvalidCredentialsError) as unknown:
        await identity.login("nobody@bistro.example", PASSWORD)
    assert wrong.value.message == unknown.value.message
    with pytest.raises(InvalidCredentialsError):
        await identity.login("", "")


async def test_disabled_account(identity):
    result = await _login(identity, "eve@bistro.example")
    await identity.deactivate_user(result.user.id)

    with pytest.raises(UnauthenticatedError):
        await identity.validate(result.tokens.access_token)
    with pytest.raises(AccountDisabledError):
        await identity.login("eve@bistro.example", PASSWORD)
    # a wrong password on a disabled account still gets the generic reply
    with pytest.raises(InvalidCredentialsError):
        await identity.login("eve@bistro.example", NEW_PASSWORD)

    await identity.activate_user(result.user.id)
    again = await identity.login("eve@bistro.example", PASSWORD)
    assert (await identity.validate(again.tokens.access_token)).user.is_active


async def test_logout_revokes_only_that_session(identity):
    phone = await _login(identity, "fay@bistro.example")
    laptop = await identity.login("fay@bistro.example", PASSWORD)

    await identity.logout(phone.tokens.session_id)
    with pytest.raises(SessionRevokedError):
        await identity.validate(phone.tokens.access_token)
    assert (await identity.validate(laptop.tokens.access_token)).session_id == laptop.tokens.session_id

    sessions = await identity.list_sessions(phone.user.id)
    assert [s.id for s in sessions] == [laptop.tokens.session_id]
    # logging out twice or an unknown session is harmless
    await identity.logout(phone.tokens.session_id)
    await identity.logout("ses_unknown")


async def test_token_kinds_are_not_interchangeable(identity):
    result = await _login(identity, "gus@bistro.example")
    with pytest.raises(InvalidTokenError):
        await identity.validate(result.tokens.refresh_token)
    with pytest.raises(InvalidTokenError):
        await identity.refresh(result.tokens.access_token)
    with pytest.raises(InvalidTokenError):
        await identity.validate("not.a.jwt")


def test_tokens_reject_tampering_and_expiry():
    tokens = TokenService("s" * 40, "bistro-core", "restaurant-platform")
    pair = tokens.issue_pair(user_id="usr_1", session_id="ses_1", role_id="role_admin", email="a@b.c")
    claims = tokens.decode(pair.access_token, TokenType.ACCESS)
    assert (claims.user_id, claims.session_id) == ("usr_1", "ses_1")

    other = TokenService("x" * 40, "bistro-core", "restaurant-platform")
    with pytest.raises(InvalidTokenError):
        other.decode(pair.access_token)
    wrong_audience = TokenService("s" * 40, "bistro-core", "somewhere-else")
    with pytest.raises(InvalidTokenError):
        wrong_audience.decode(pair.access_token)

    expired = TokenService(
        "s" * 40, "bistro-core", "restaurant-platform", access_ttl=timedelta(seconds=-5)
    )
    stale = expired.issue_pair(user_id="usr_1", session_id="ses_1", role_id="", email="")
    with pytest.raises(TokenExpiredError):
        tokens.decode(stale.access_token)


async def test_change_password_checks_current(identity):
    result = await _login(identity, "hal@bistro.example")
    with pytest.raises(PasswordMismatchError):
        await identity.change_password(result.user.id, NEW_PASSWORD, NEW_PASSWORD)
    with pytest.raises(ValidationError):
        await identity.change_password(result.user.id, PASSWORD, PASSWORD)
    with pytest.raises(ValidationError):
        await identity.change_password(result.user.id, PASSWORD, "password123")
    # rejected changes keep the session alive
    assert await identity.validate(result.tokens.access_token)


async def test_cleanup_removes_dead_sessions(identity):
    result = await _login(identity, "ida@bistro.example")
    await identity.login("ida@bistro.example", PASSWORD)
    await identity.logout(result.tokens.session_id)
    assert await identity.cleanup_sessions() == 1
    assert len(await identity.list_sessions(result.user.id)) == 1


async def test_seeded_roles_and_authorization(identity):
    roles = {r.id: r for r in await identity.list_roles()}
    assert set(roles) == {default_role_id(name) for name in DEFAULT_ROLES}
    # seeding again changes nothing
    assert len(await identity.seed_default_roles()) == len(roles)

    cook = await _login(identity, "jon@bistro.example", role_id=default_role_id("kitchen_staff"))
    principal = await identity.validate(cook.tokens.access_token)
    await identity.authorize(principal, "kitchen", "update")
    await identity.authorize(principal, "inventory", "update")
    with pytest.raises(UnauthorizedError) as exc:
        await identity.authorize(principal, "inventory", "manage")
    assert exc.value.status_code == 403

    await identity.assign_role(cook.user.id, default_role_id("admin"))
    promoted = await identity.validate(cook.tokens.access_token)
    await identity.authorize(promoted, "user", "delete")


async def test_custom_roles(identity):
    role = await identity.create_role("sommelier", "Wine service")
    await identity.create_permission("cellar", "read")
    updated = await identity.set_role_permissions(role.id, ["cellar:read", "menu:read"])
    assert sorted(p.name for p in updated.permissions) == ["cellar:read", "menu:read"]
    assert updated.allows("cellar", "read")
    assert not updated.allows("cellar", "update")
    with pytest.raises(ValidationError):
        await identity.create_permission("cellar", "fly")
    with pytest.raises(AlreadyExistsError):
        await identity.create_role("sommelier")

    granted = await identity.grant_permission(role.id, "order:read")
    assert granted.allows("order", "read")
    revoked = await identity.revoke_permission(role.id, "cellar:read")
    assert not revoked.allows("cellar", "read")

    somm = await _login(identity, "kai@bistro.example", role_id=role.id)
    with pytest.raises(ConflictError):
        await identity.delete_role(role.id)
    await identity.delete_user(somm.user.id)
    with pytest.raises(UnauthenticatedError):
        await identity.validate(somm.tokens.access_token)
    await identity.delete_role(role.id)
    assert role.id not in {r.id for r in await identity.list_roles()}


def test_password_policy():
    validate_password(PASSWORD)
    for bad in ["Aa1!", "alllowercase1!", "ALLUPPER1!", "NoDigits!!", "NoSpecial12", "Abc!9xyzQ"]:
        with pytest.raises(ValidationError):
            validate_password(bad)
    assert has_sequential_chars("xx123")
    assert has_sequential_chars("zcba")
    assert not has_sequential_chars(PASSWORD)
    assert estimate_strength(PASSWORD) > estimate_strength("password1")


def test_password_round_trip():
    passwords = PasswordService(time_cost=1, memory_cost=8192)
    digest = passwords.hash(PASSWORD)
    assert passwords.verify(PASSWORD, digest)
    assert not passwords.verify(NEW_PASSWORD, digest)
    assert not passwords.verify(PASSWORD, "not-a-hash")
    assert passwords.needs_rehash(digest) is False
    assert PasswordService(time_cost=2, memory_cost=8192).needs_rehash(digest)


async def test_concurrent_refresh_with_one_token_rotates_once(identity):
    first = await _login(identity, "lea@bistro.example")
    results = await asyncio.gather(
        identity.refresh(first.tokens.refresh_token),
        identity.refresh(first.tokens.refresh_token),
        return_exceptions=True,
    )

    winners = [r for r in results if not isinstance(r, BaseException)]
    losers = [r for r in results if isinstance(r, BaseException)]
    assert len(winners) == 1
    assert len(losers) == 1 and isinstance(losers[0], RefreshTokenMismatchError)
    principal = await identity.validate(winners[0].tokens.access_token)
    assert principal.session_id == first.tokens.session_id
    with pytest.raises(RefreshTokenMismatchError):
        await identity.refresh(first.tokens.refresh_token)


async def test_writes_to_a_deleted_user_are_reported(identity):
    user = await identity.register("max@bistro.example", PASSWORD)
    await identity.delete_user(user.id)
    user.is_active = False
    with pytest.raises(NotFoundError):
        await identity.repo.update_user(user)
    with pytest.raises(NotFoundError):
        await identity.repo.update_password(user.id, "not-a-real-hash")
