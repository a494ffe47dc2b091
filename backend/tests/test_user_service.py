import asyncio
import uuid

import pytest
from sqlalchemy import select

from user_directory.core.exceptions import ConflictError, NotFoundError, ValidationError
from user_directory.core.security import verify_password
from user_directory.models.user import User, UserRole, UserStatus
from user_directory.schemas.user import UserUpdate
from user_directory.services.user_service import UserService, conflicting_field


# ── Create ───────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_create_defaults_role_user_and_status_active(service, user_data):
    user = await service.create_user(user_data(username="alice", email="Alice@Example.com"))

    assert isinstance(user.id, uuid.UUID)
    assert user.role is UserRole.USER
    assert user.status is UserStatus.ACTIVE
    assert user.email == "alice@example.com"
    assert user.created_at is not None
    assert user.updated_at is not None
    assert user.last_login is None


@pytest.mark.asyncio
async def test_create_hashes_password(service, user_data):
    user = await service.create_user(user_data(password="Sup3r-secret"))

    assert user.hashed_password != "Sup3r-secret"
    assert verify_password("Sup3r-secret", user.hashed_password)


@pytest.mark.asyncio
async def test_create_keeps_requested_role(service, user_data):
    user = await service.create_user(user_data(role=UserRole.MANAGER))
    assert user.role is UserRole.MANAGER


@pytest.mark.asyncio
async def test_create_rejects_duplicate_username(service, user_data):
    await service.create_user(user_data(username="taken"))

    with pytest.raises(ConflictError) as exc:
        await service.create_user(user_data(username="taken"))
    assert exc.value.field == "username"


@pytest.mark.asyncio
async def test_create_rejects_duplicate_email_case_insensitively(service, user_data):
    await service.create_user(user_data(email="dup@example.com"))

    with pytest.raises(ConflictError) as exc:
        await service.create_user(user_data(email="DUP@example.com"))
    assert exc.value.field == "email"


@pytest.mark.asyncio
async def test_create_validates_before_writing(service, db, user_data):
    data = user_data()
    data.last_name = "x" * 60

    with pytest.raises(ValidationError) as exc:
        await service.create_user(data)

    assert exc.value.fields == ["last_name"]
    count = (await db.execute(select(User))).scalars().all()
    assert count == []


@pytest.mark.asyncio
async def test_unique_index_catches_race_past_precheck(session_factory, user_data, monkeypatch):
    """A writer that passed the pre-check before a rival committed still gets a conflict."""
    async with session_factory() as session:
        await UserService(session).create_user(
            user_data(username="racer", email="racer@example.com")
        )
        await session.commit()

    async def precheck_ran_before_rival_commit(*args, **kwargs):
        return None

    async with session_factory() as session:
        late = UserService(session)
        monkeypatch.setattr(late, "_ensure_unique", precheck_ran_before_rival_commit)

        with pytest.raises(ConflictError) as exc:
            await late.create_user(user_data(username="racer"))
        assert exc.value.field == "username"

        with pytest.raises(ConflictError) as exc:
            await late.create_user(user_data(email="racer@example.com"))
        assert exc.value.field == "email"

    async with session_factory() as session:
        users = await UserService(session).list_all_users()
    assert [u.username for u in users] == ["racer"]


@pytest.mark.parametrize(
    "message, field",
    [
        ("UNIQUE constraint failed: users.username", "username"),
        ("UNIQUE constraint failed: users.email", "email"),
        (
            'duplicate key value violates unique constraint "ix_users_username"\n'
            "DETAIL:  Key (username)=(emailbot) already exists.",
            "username",
        ),
        (
            'duplicate key value violates unique constraint "ix_users_email"\n'
            "DETAIL:  Key (email)=(username@example.com) already exists.",
            "email",
        ),
        ("NOT NULL constraint failed: users.email", None),
        ("", None),
    ],
)
def test_conflicting_field_reads_constraint_not_value(message, field):
    assert conflicting_field(message) == field


# ── Read ─────────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_lookups(service, user_data):
    user = await service.create_user(user_data(username="bob", email="bob@example.com"))

    assert (await service.get_user(user.id)).id == user.id
    assert (await service.get_user_by_username("bob")).id == user.id
    assert (await service.get_user_by_email("BOB@example.com")).id == user.id


@pytest.mark.asyncio
async def test_lookups_raise_not_found(service):
    with pytest.raises(NotFoundError):
        await service.get_user(uuid.uuid4())
    with pytest.raises(NotFoundError):
        await service.get_user_by_username("ghost")
    with pytest.raises(NotFoundError):
        await service.get_user_by_email("ghost@example.com")


# ── Update ───────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_update_applies_only_sent_fields(service, user_data):
    user = await service.create_user(user_data(first_name="John", phone_number="555-0100"))

    updated = await service.update_user(user.id, UserUpdate(last_name="Smith"))

    assert updated.first_name == "John"
    assert updated.last_name == "Smith"
    assert updated.phone_number == "555-0100"


@pytest.mark.asyncio
async def test_update_to_another_users_email_conflicts_and_changes_nothing(
    session_factory, user_data
):
    async with session_factory() as session:
        service = UserService(session)
        first = await service.create_user(user_data(email="first@example.com", first_name="First"))
        second = await service.create_user(user_data(email="second@example.com"))
        await session.commit()

    async with session_factory() as session:
        with pytest.raises(ConflictError) as exc:
            await UserService(session).update_user(
                second.id, UserUpdate(email="first@example.com", first_name="Changed")
            )
        assert exc.value.field == "email"
        await session.rollback()

    async with session_factory() as session:
        service = UserService(session)
        assert (await service.get_user(first.id)).email == "first@example.com"
        reloaded = await service.get_user(second.id)
        assert reloaded.email == "second@example.com"
        assert reloaded.first_name == second.first_name


@pytest.mark.asyncio
async def test_update_keeping_own_username_and_email_is_not_a_conflict(service, user_data):
    user = await service.create_user(user_data(username="same", email="same@example.com"))

    updated = await service.update_user(
        user.id, UserUpdate(username="same", email="SAME@example.com", first_name="New")
    )
    assert updated.first_name == "New"


@pytest.mark.asyncio
async def test_update_username_to_taken_value_conflicts(service, user_data):
    await service.create_user(user_data(username="holder"))
    user = await service.create_user(user_data())

    with pytest.raises(ConflictError):
        await service.update_user(user.id, UserUpdate(username="holder"))


@pytest.mark.asyncio
async def test_update_overwrites_role_and_status(service, user_data):
    user = await service.create_user(user_data())

    updated = await service.update_user(
        user.id, UserUpdate(role=UserRole.GUEST, status=UserStatus.PENDING_VERIFICATION)
    )
    assert updated.role is UserRole.GUEST
    assert updated.status is UserStatus.PENDING_VERIFICATION


@pytest.mark.asyncio
async def test_update_rejects_clearing_required_field(service, user_data):
    user = await service.create_user(user_data())

    with pytest.raises(ValidationError) as exc:
        await service.update_user(user.id, UserUpdate(first_name=None))
    assert exc.value.fields == ["first_name"]


@pytest.mark.asyncio
async def test_update_missing_user(service):
    with pytest.raises(NotFoundError):
        await service.update_user(uuid.uuid4(), UserUpdate(first_name="X"))


# ── Delete ───────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_delete_then_get_is_not_found(service, user_data):
    user = await service.create_user(user_data())

    await service.delete_user(user.id)

    with pytest.raises(NotFoundError):
        await service.get_user(user.id)


@pytest.mark.asyncio
async def test_delete_missing_user(service):
    with pytest.raises(NotFoundError):
        await service.delete_user(uuid.uuid4())


# ── Status & Role ────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_status_transitions(service, user_data):
    user = await service.create_user(user_data())

    assert (await service.suspend_user(user.id)).status is UserStatus.SUSPENDED
    assert (await service.activate_user(user.id)).status is UserStatus.ACTIVE
    assert (await service.deactivate_user(user.id)).status is UserStatus.INACTIVE
    assert (await service.suspend_user(user.id)).status is UserStatus.SUSPENDED


@pytest.mark.asyncio
async def test_writes_advance_updated_at_and_keep_created_at(service, user_data):
    user = await service.create_user(user_data())
    created_at = user.created_at
    stamp = user.updated_at

    await asyncio.sleep(0.01)
    updated = await service.update_user(user.id, UserUpdate(last_name="Changed"))
    assert updated.created_at == created_at
    assert updated.updated_at > stamp
    stamp = updated.updated_at

    await asyncio.sleep(0.01)
    suspended = await service.suspend_user(user.id)
    assert suspended.created_at == created_at
    assert suspended.updated_at > stamp


@pytest.mark.asyncio
async def test_transition_to_current_status_is_a_noop(service, user_data):
    user = await service.create_user(user_data())
    await service.suspend_user(user.id)
    stamp = (await service.get_user(user.id)).updated_at

    again = await service.suspend_user(user.id)

    assert again.status is UserStatus.SUSPENDED
    assert again.updated_at == stamp


@pytest.mark.asyncio
async def test_status_change_on_missing_user(service):
    with pytest.raises(NotFoundError):
        await service.activate_user(uuid.uuid4())


@pytest.mark.asyncio
async def test_change_role(service, user_data):
    user = await service.create_user(user_data())

    assert (await service.change_role(user.id, "manager")).role is UserRole.MANAGER
    assert (await service.change_role(user.id, UserRole.ADMIN)).role is UserRole.ADMIN


@pytest.mark.asyncio
async def test_change_role_rejects_unknown_token(service, user_data):
    user = await service.create_user(user_data())

    with pytest.raises(ValidationError):
        await service.change_role(user.id, "owner")


# ── Listing & Search ─────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_pagination_over_25_users(service, user_data):
    for _ in range(25):
        await service.create_user(user_data())

    first = await service.list_users(page=0, size=10)
    last = await service.list_users(page=2, size=10)

    assert len(first["items"]) == 10
    assert first["total_elements"] == 25
    assert first["total_pages"] == 3
    assert len(last["items"]) == 5


@pytest.mark.asyncio
async def test_pagination_on_empty_directory(service):
    page = await service.list_users(page=0, size=10)
    assert page["items"] == []
    assert page["total_elements"] == 0
    assert page["total_pages"] == 0


@pytest.mark.asyncio
async def test_sorting(service, user_data):
    for name in ("charlie", "alpha", "bravo"):
        await service.create_user(user_data(username=name))

    asc = await service.list_users(page=0, size=10, sort_by="username", sort_dir="asc")
    desc = await service.list_users(page=0, size=10, sort_by="username", sort_dir="DESC")

    assert [u.username for u in asc["items"]] == ["alpha", "bravo", "charlie"]
    assert [u.username for u in desc["items"]] == ["charlie", "bravo", "alpha"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "kwargs, field",
    [
        ({"page": -1}, "page"),
        ({"size": 0}, "size"),
        ({"size": 1000}, "size"),
        ({"sort_by": "hashed_password"}, "sort_by"),
        ({"sort_dir": "sideways"}, "sort_dir"),
    ],
)
async def test_pagination_parameter_errors(service, kwargs, field):
    with pytest.raises(ValidationError) as exc:
        await service.list_users(**kwargs)
    assert exc.value.fields == [field]


@pytest.mark.asyncio
async def test_list_by_role_and_status(service, user_data):
    admin = await service.create_user(user_data(role=UserRole.ADMIN))
    user = await service.create_user(user_data())
    await service.suspend_user(user.id)

    assert [u.id for u in await service.list_by_role("ADMIN")] == [admin.id]
    assert [u.id for u in await service.list_by_status("suspended")] == [user.id]
    assert await service.list_by_role(UserRole.GUEST) == []


@pytest.mark.asyncio
async def test_unknown_filter_tokens_are_validation_errors(service):
    with pytest.raises(ValidationError):
        await service.list_by_role("root")
    with pytest.raises(ValidationError):
        await service.list_by_status("archived")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "term, found",
    [
        ("doe", True),
        ("DOE", True),
        ("john", True),
        ("john doe", True),
        ("n D", True),
        ("jo do", False),
        ("doe john", False),
        ("zzz", False),
    ],
)
async def test_search_by_name(service, user_data, term, found):
    user = await service.create_user(user_data(first_name="John", last_name="Doe"))

    results = await service.search_by_name(term)

    assert ([u.id for u in results] == [user.id]) is found
    if not found:
        assert results == []


@pytest.mark.asyncio
async def test_search_treats_wildcards_literally(service, user_data):
    await service.create_user(user_data(first_name="John", last_name="Doe"))
    assert await service.search_by_name("%") == []
    assert await service.search_by_name("J_hn") == []


@pytest.mark.asyncio
async def test_search_requires_a_term(service):
    with pytest.raises(ValidationError):
        await service.search_by_name("   ")


# ── Statistics ───────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_statistics_on_empty_directory(service):
    stats = await service.get_statistics()

    assert stats["total"] == 0
    assert stats["active_percentage"] == 0
    assert set(stats["by_status"]) == set(UserStatus)
    assert set(stats["by_role"]) == set(UserRole)
    assert all(v == 0 for v in stats["by_status"].values())


@pytest.mark.asyncio
async def test_statistics_counts(service, user_data):
    await service.create_user(user_data(role=UserRole.ADMIN))
    await service.create_user(user_data(role=UserRole.MANAGER))
    inactive = await service.create_user(user_data())
    suspended = await service.create_user(user_data(role=UserRole.GUEST))
    await service.deactivate_user(inactive.id)
    await service.suspend_user(suspended.id)

    stats = await service.get_statistics()

    assert stats["total"] == 4
    assert stats["by_status"][UserStatus.ACTIVE] == 2
    assert stats["by_status"][UserStatus.INACTIVE] == 1
    assert stats["by_status"][UserStatus.SUSPENDED] == 1
    assert stats["by_status"][UserStatus.PENDING_VERIFICATION] == 0
    assert stats["by_role"] == {
        UserRole.ADMIN: 1,
        UserRole.MANAGER: 1,
        UserRole.USER: 1,
        UserRole.GUEST: 1,
    }
    assert stats["active_percentage"] == pytest.approx(50.0)


@pytest.mark.asyncio
async def test_active_percentage_is_exact_ratio(service, user_data):
    users = [await service.create_user(user_data()) for _ in range(3)]
    await service.deactivate_user(users[0].id)

    stats = await service.get_statistics()
    assert stats["active_percentage"] == pytest.approx(2 / 3 * 100)


# ── Authentication ───────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_authenticate(service, user_data):
    await service.create_user(user_data(username="login", password="Correct#1"))

    assert (await service.authenticate("login", "Correct#1")).username == "login"
    assert await service.authenticate("login", "wrong-pass") is None
    assert await service.authenticate("nobody", "Correct#1") is None


@pytest.mark.asyncio
async def test_record_login_sets_last_login(service, user_data):
    user = await service.create_user(user_data(username="stamp"))
    assert user.last_login is None

    stamped = await service.record_login("stamp")

    assert stamped.last_login is not None


@pytest.mark.asyncio
async def test_record_login_unknown_user(service):
    with pytest.raises(NotFoundError):
        await service.record_login("ghost")


@pytest.mark.asyncio
async def test_reset_password(service, user_data):
    user = await service.create_user(user_data(username="resetme"))

    await service.reset_password(user.id, "Brand-new#2")

    assert await service.authenticate("resetme", "Brand-new#2") is not None
    with pytest.raises(ValidationError):
        await service.reset_password(user.id, "short")
