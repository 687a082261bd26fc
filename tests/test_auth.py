import pytest

import errors
import security
from auth import RESETS, USERS, default_avatar_url
from schemas import UserIdentity


def test_register_then_authenticate(sessions):
    registered = sessions.register("Ada Lovelace", "ada@example.com", "engine123")
    result = sessions.authenticate("ada@example.com", "engine123")

    assert result.user.id == registered.user.id
    claims = sessions.verify(result.token)
    assert claims.id == registered.user.id


def test_register_stores_hash_not_password(sessions, store):
    sessions.register("Ada", "ada@example.com", "engine123")
    record = store.find_one(USERS, {"email": "ada@example.com"})

    assert record["password_hash"] != "engine123"
    assert security.verify_password("engine123", record["password_hash"])
    assert record["created_at"] is not None


def test_register_defaults_avatar_from_name(sessions):
    result = sessions.register("Ada Lovelace", "ada@example.com", "engine123")
    assert result.user.avatar == default_avatar_url("Ada Lovelace")
    assert "name=Ada%20Lovelace" in result.user.avatar


def test_register_keeps_supplied_avatar(sessions):
    result = sessions.register("Ada", "ada@example.com", "engine123", avatar="https://img/ada.png")
    assert result.user.avatar == "https://img/ada.png"


def test_duplicate_register_conflicts_and_keeps_record(sessions, store):
    first = sessions.register("Ada", "ada@example.com", "engine123")
    before = store.find_one(USERS, {"email": "ada@example.com"})

    with pytest.raises(errors.DuplicateEmail) as exc:
        sessions.register("Impostor", "ada@example.com", "other")

    assert exc.value.status_code == 409
    assert store.find_one(USERS, {"email": "ada@example.com"}) == before
    assert store.count(USERS) == 1
    assert sessions.get_user(first.user.id).name == "Ada"


def test_authenticate_same_error_for_unknown_user_and_bad_password(sessions):
    sessions.register("Ada", "ada@example.com", "engine123")

    with pytest.raises(errors.InvalidCredentials) as unknown:
        sessions.authenticate("nobody@example.com", "engine123")
    with pytest.raises(errors.InvalidCredentials) as wrong:
        sessions.authenticate("ada@example.com", "wrong")

    assert unknown.value.message == wrong.value.message
    assert unknown.value.status_code == 401


def test_email_lookup_is_case_sensitive(sessions):
    sessions.register("Ada", "ada@example.com", "engine123")
    with pytest.raises(errors.InvalidCredentials):
        sessions.authenticate("ADA@example.com", "engine123")


def test_verify_issue_round_trip_and_expiry(sessions, clock):
    identity = UserIdentity(id="u1", email="ada@example.com", name="Ada")
    token = sessions.issue(identity)

    claims = sessions.verify(token)
    assert (claims.id, claims.email, claims.name) == ("u1", "ada@example.com", "Ada")

    clock.advance(days=7, seconds=1)
    assert sessions.verify(token) is None


def test_verify_never_raises(sessions, store, clock):
    assert sessions.verify("") is None
    assert sessions.verify("not-a-token") is None
    assert sessions.verify("a.b.c") is None

    from auth import SessionManager

    other = SessionManager(store, secret_key="another-secret", clock=clock)
    foreign = other.issue(UserIdentity(id="u1", email="a@example.com", name="A"))
    assert sessions.verify(foreign) is None


def test_change_password(sessions):
    result = sessions.register("Ada", "ada@example.com", "engine123")

    sessions.change_password(result.user, "engine123", "analytical")

    assert sessions.authenticate("ada@example.com", "analytical").user.id == result.user.id
    with pytest.raises(errors.InvalidCredentials):
        sessions.authenticate("ada@example.com", "engine123")


def test_change_password_requires_current_password(sessions):
    result = sessions.register("Ada", "ada@example.com", "engine123")

    with pytest.raises(errors.InvalidCredentials):
        sessions.change_password(result.user, "wrong", "analytical")

    assert sessions.authenticate("ada@example.com", "engine123")


def test_change_password_for_missing_user(sessions):
    ghost = UserIdentity(id="ghost", email="ghost@example.com", name="Ghost")
    with pytest.raises(errors.NotFoundError):
        sessions.change_password(ghost, "a", "b")


def test_request_password_reset_unknown_email_returns_nothing(sessions, store):
    assert sessions.request_password_reset("nobody@example.com") is None
    assert store.count(RESETS) == 0


def test_password_reset_is_single_use(sessions):
    sessions.register("Ada", "ada@example.com", "engine123")
    token = sessions.request_password_reset("ada@example.com")
    assert len(token) == 64

    sessions.consume_password_reset(token, "brandnew")

    assert sessions.authenticate("ada@example.com", "brandnew")
    with pytest.raises(errors.InvalidOrExpiredToken):
        sessions.consume_password_reset(token, "again")


def test_expired_reset_token_fails_and_is_deleted(sessions, store, clock):
    sessions.register("Ada", "ada@example.com", "engine123")
    token = sessions.request_password_reset("ada@example.com")

    clock.advance(hours=1, seconds=1)

    with pytest.raises(errors.InvalidOrExpiredToken) as exc:
        sessions.consume_password_reset(token, "brandnew")
    assert exc.value.status_code == 400
    assert store.count(RESETS) == 0

    with pytest.raises(errors.InvalidOrExpiredToken):
        sessions.consume_password_reset(token, "brandnew")
    assert sessions.authenticate("ada@example.com", "engine123")


def test_reset_for_deleted_user(sessions, store):
    sessions.register("Ada", "ada@example.com", "engine123")
    token = sessions.request_password_reset("ada@example.com")
    store.delete(USERS, {"email": "ada@example.com"})

    with pytest.raises(errors.NotFoundError):
        sessions.consume_password_reset(token, "brandnew")


def test_update_profile_reissues_token(sessions):
    result = sessions.register("Ada", "ada@example.com", "engine123")

    updated = sessions.update_profile(result.user, name="Countess Ada", email="countess@example.com", bio="Math")

    assert updated.user.name == "Countess Ada"
    assert updated.token != result.token
    claims = sessions.verify(updated.token)
    assert (claims.name, claims.email) == ("Countess Ada", "countess@example.com")
    assert sessions.authenticate("countess@example.com", "engine123").user.id == result.user.id


def test_update_profile_keeps_avatar_when_none_given(sessions):
    result = sessions.register("Ada", "ada@example.com", "engine123", avatar="https://img/ada.png")
    updated = sessions.update_profile(result.user, name="Ada", email="ada@example.com")
    assert updated.user.avatar == "https://img/ada.png"


def test_update_profile_email_taken(sessions):
    ada = sessions.register("Ada", "ada@example.com", "engine123")
    sessions.register("Grace", "grace@example.com", "cobol")

    with pytest.raises(errors.EmailTaken) as exc:
        sessions.update_profile(ada.user, name="Ada", email="grace@example.com")
    assert exc.value.status_code == 409


def test_list_users_hides_password_hash(sessions):
    sessions.register("Ada", "ada@example.com", "engine123")
    users = sessions.list_users()
    assert len(users) == 1
    assert "password_hash" not in users[0]
    assert sessions.count_users() == 1
