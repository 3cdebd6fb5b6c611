"""Unit tests for projectsync.identity — AuthSession lifecycle and LocalIdentityProvider."""

from unittest.mock import MagicMock

import pytest

from projectsync.engine.cache import SessionTokenStore
from projectsync.engine.errors import SessionError, ValidationError
from projectsync.identity import (
    AuthSession,
    AuthState,
    LocalIdentityProvider,
    SessionUser,
    hash_password,
    verify_password,
)


@pytest.fixture
def auth():
    return AuthSession()


@pytest.fixture
def tokens():
    return SessionTokenStore(ttl=60)


@pytest.fixture
def provider(session_factory, auth, tokens):
    return LocalIdentityProvider(session_factory, auth, tokens, bcrypt_rounds=4)


class TestPasswordHashing:
    def test_hash_and_verify(self):
        hashed = hash_password("secret1", rounds=4)
        assert hashed != "secret1"
        assert verify_password("secret1", hashed) is True
        assert verify_password("wrong", hashed) is False


class TestAuthSession:
    def test_initial_state(self, auth):
        assert auth.state is AuthState.INITIALIZING
        assert auth.loading is True
        assert auth.is_authenticated is False
        assert auth.uid is None

    def test_for_user(self):
        session = AuthSession.for_user("U1", email="u1@example.com")
        assert session.state is AuthState.READY
        assert session.uid == "U1"
        assert session.is_authenticated

    def test_listeners(self, auth):
        listener = MagicMock()
        remove = auth.add_listener(listener)
        auth.set_user(SessionUser(uid="U1"), token="tok")
        auth.set_user(None)
        assert listener.call_count == 2
        assert auth.token is None
        assert auth.state is AuthState.READY
        remove()
        auth.set_user(SessionUser(uid="U2"))
        assert listener.call_count == 2


class TestLocalIdentityProvider:
    @pytest.mark.asyncio
    async def test_sign_up_and_sign_in(self, provider, auth):
        user = await provider.sign_up("Ann@Example.com", "secret1", "secret1")
        assert user.email == "ann@example.com"
        assert auth.uid == user.uid
        assert auth.token

        await provider.sign_out()
        assert auth.user is None
        assert auth.state is AuthState.READY

        again = await provider.sign_in("ann@example.com", "secret1")
        assert again.uid == user.uid
        assert auth.is_authenticated

    @pytest.mark.asyncio
    async def test_bad_credentials(self, provider):
        await provider.sign_up("ann@example.com", "secret1", "secret1")
        with pytest.raises(SessionError) as exc_info:
            await provider.sign_in("ann@example.com", "nope-nope")
        assert exc_info.value.message == "Failed to login. Please check your credentials."
        with pytest.raises(SessionError):
            await provider.sign_in("nobody@example.com", "secret1")

    @pytest.mark.asyncio
    async def test_sign_up_validation(self, provider, auth):
        with pytest.raises(ValidationError) as exc_info:
            await provider.sign_up("not-an-email", "123", "456")
        errors = exc_info.value.field_errors
        assert set(errors) == {"email", "password", "confirmPassword"}
        assert errors["confirmPassword"] == "Passwords do not match."
        assert exc_info.value.message == "Passwords do not match."
        assert auth.user is None

    @pytest.mark.asyncio
    async def test_duplicate_email(self, provider):
        await provider.sign_up("ann@example.com", "secret1", "secret1")
        with pytest.raises(ValidationError) as exc_info:
            await provider.sign_up("ann@example.com", "secret2", "secret2")
        assert exc_info.value.field_errors == {"email": "Email already in use."}

    @pytest.mark.asyncio
    async def test_google_sign_in(self, provider, auth):
        profile = {"sub": "1234", "email": "ann@example.com", "name": "Ann"}
        user = await provider.sign_in_with_provider("google", profile)
        assert user.uid == "google:1234"
        assert user.display_name == "Ann"
        assert auth.uid == "google:1234"

        again = await provider.sign_in_with_provider("google", profile)
        assert again.uid == user.uid

    @pytest.mark.asyncio
    async def test_unsupported_provider(self, provider):
        with pytest.raises(ValidationError):
            await provider.sign_in_with_provider("myspace", {"sub": "1"})
        with pytest.raises(SessionError):
            await provider.sign_in_with_provider("google", {})

    @pytest.mark.asyncio
    async def test_get_user(self, provider):
        user = await provider.sign_up("ann@example.com", "secret1", "secret1")
        assert (await provider.get_user(user.uid)).email == "ann@example.com"
        assert await provider.get_user("missing") is None

    @pytest.mark.asyncio
    async def test_restore(self, session_factory, provider, auth, tokens):
        user = await provider.sign_up("ann@example.com", "secret1", "secret1")
        token = auth.token

        restored_auth = AuthSession()
        other = LocalIdentityProvider(session_factory, restored_auth, tokens, bcrypt_rounds=4)
        assert restored_auth.loading
        assert (await other.restore(token)).uid == user.uid
        assert restored_auth.uid == user.uid

    @pytest.mark.asyncio
    async def test_restore_unknown_token_is_ready_anonymous(self, provider, auth):
        assert await provider.restore("bogus") is None
        assert auth.state is AuthState.READY
        assert auth.user is None
        assert await provider.restore(None) is None

    @pytest.mark.asyncio
    async def test_sign_out_revokes_token(self, provider, auth, tokens):
        await provider.sign_up("ann@example.com", "secret1", "secret1")
        token = auth.token
        await provider.sign_out()
        assert tokens.resolve(token) is None
