"""
tests/test_session.py -- Unit tests for auth.session.SessionService.

Covers:
  - register stores a hash, issues a pair, sends a verification email
  - login: success, and identical InvalidCredentials for every failure cause
  - refresh rotates; the old refresh token is dead afterwards
  - logout is idempotent and kills the refresh token
  - two concurrent refreshes with one token: exactly one succeeds
  - federated login: create, link by email, reuse, ADMIN_EMAIL promotion
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from auth.errors import (
    AccountInactive,
    DuplicateAccount,
    InvalidCredentials,
    InvalidOperation,
    InvalidOrExpiredToken,
    NotFound,
)
from auth.models import Role, TokenPair
from auth.session import SessionService
from auth.tokens import token_digest


def _register(services, email: str = "alice@example.com", password: str = "Passw0rd"):
    return services.sessions.register(email=email, password=password, first_name="Alice", last_name="Levi")


class TestRegister:
    def test_register_returns_account_and_pair(self, services) -> None:
        result = _register(services)
        assert result.account.email == "alice@example.com"
        assert result.account.is_verified is False
        assert services.issuer.verify_access(result.tokens.access_token) == result.account.id

    def test_register_stores_hash_not_password(self, services) -> None:
        result = _register(services)
        stored = services.store.get_by_id(result.account.id)
        assert stored.password_hash != "Passw0rd"
        assert services.hasher.verify("Passw0rd", stored.password_hash)

    def test_register_installs_refresh_digest(self, services) -> None:
        result = _register(services)
        stored = services.store.get_by_id(result.account.id)
        assert stored.refresh_token_digest == token_digest(result.tokens.refresh_token)

    def test_register_sends_verification(self, services) -> None:
        _register(services)
        assert services.notifier.kinds("alice@example.com") == ["verification"]

    def test_register_survives_notifier_failure(self, services) -> None:
        services.notifier.fail = True
        result = _register(services)
        assert services.store.get_by_id(result.account.id) is not None

    def test_duplicate_email_rejected(self, services) -> None:
        _register(services)
        with pytest.raises(DuplicateAccount):
            _register(services, email="ALICE@example.com")

    def test_register_agent_role(self, services) -> None:
        result = services.sessions.register(
            email="agent@example.com", password="Passw0rd", first_name="Ag", last_name="Ent", role=Role.agent
        )
        assert result.account.role is Role.agent

    def test_admin_role_not_self_assignable(self, services) -> None:
        with pytest.raises(InvalidOperation):
            services.sessions.register(
                email="boss@example.com", password="Passw0rd", first_name="Bo", last_name="Ss", role=Role.admin
            )
        assert services.store.get_by_email("boss@example.com") is None


class TestLogin:
    def test_login_returns_pair_for_account(self, services) -> None:
        account = services.add_account("bob@example.com")
        result = services.sessions.login("bob@example.com", "Passw0rd")
        assert services.issuer.verify_access(result.tokens.access_token) == account.id
        assert result.account.last_login_at is not None

    def test_login_replaces_previous_session(self, services) -> None:
        registered = _register(services)
        logged_in = services.sessions.login("alice@example.com", "Passw0rd")
        assert logged_in.tokens.refresh_token != registered.tokens.refresh_token
        with pytest.raises(InvalidOrExpiredToken):
            services.sessions.refresh(registered.tokens.refresh_token)

    def test_unverified_account_may_log_in(self, services) -> None:
        _register(services)
        assert services.sessions.login("alice@example.com", "Passw0rd").account.is_verified is False

    @pytest.mark.parametrize(
        "email,password",
        [
            ("bob@example.com", "Wrong0ne"),
            ("nobody@example.com", "Passw0rd"),
            ("google-only@example.com", "Passw0rd"),
            ("inactive@example.com", "Passw0rd"),
        ],
    )
    def test_every_failure_is_invalid_credentials(self, services, email: str, password: str) -> None:
        services.add_account("bob@example.com")
        services.add_account("google-only@example.com", password=None)
        services.add_account("inactive@example.com", is_active=False)
        with pytest.raises(InvalidCredentials) as info:
            services.sessions.login(email, password)
        assert info.value.message == InvalidCredentials.default_message


class TestRefresh:
    def test_refresh_rotates(self, services) -> None:
        old = _register(services).tokens
        new = services.sessions.refresh(old.refresh_token)
        assert isinstance(new, TokenPair)
        assert new.refresh_token != old.refresh_token

        with pytest.raises(InvalidOrExpiredToken) as info:
            services.sessions.refresh(old.refresh_token)
        assert info.value.status_code == 401
        # The winner's session survives the replay attempt.
        assert services.sessions.refresh(new.refresh_token).refresh_token != new.refresh_token

    def test_refresh_rejects_access_token(self, services) -> None:
        tokens = _register(services).tokens
        with pytest.raises(InvalidOrExpiredToken):
            services.sessions.refresh(tokens.access_token)

    def test_refresh_rejects_garbage(self, services) -> None:
        with pytest.raises(InvalidOrExpiredToken):
            services.sessions.refresh("garbage")

    def test_refresh_for_deleted_account(self, services) -> None:
        result = _register(services)
        services.store.delete_account(result.account.id)
        with pytest.raises(InvalidOrExpiredToken):
            services.sessions.refresh(result.tokens.refresh_token)

    def test_refresh_for_inactive_account(self, services) -> None:
        account = services.add_account("carl@example.com")
        tokens = services.sessions.login("carl@example.com", "Passw0rd").tokens
        services.store.set_active(account.id, False)
        # Reinstall the digest so only the active flag stands in the way.
        services.store.set_refresh_token(account.id, token_digest(tokens.refresh_token))
        with pytest.raises(AccountInactive):
            services.sessions.refresh(tokens.refresh_token)

    def test_concurrent_refresh_exactly_one_wins(self, file_services) -> None:
        """Two threads present the same refresh token at the same moment."""
        tokens = _register(file_services).tokens
        barrier = threading.Barrier(2)

        def attempt():
            barrier.wait()
            try:
                return file_services.sessions.refresh(tokens.refresh_token)
            except InvalidOrExpiredToken as exc:
                return exc

        with ThreadPoolExecutor(max_workers=2) as pool:
            outcomes = list(pool.map(lambda _: attempt(), range(2)))

        winners = [o for o in outcomes if isinstance(o, TokenPair)]
        losers = [o for o in outcomes if isinstance(o, InvalidOrExpiredToken)]
        assert len(winners) == 1
        assert len(losers) == 1
        account = file_services.store.get_by_email("alice@example.com")
        assert account.refresh_token_digest == token_digest(winners[0].refresh_token)


class TestLogout:
    def test_logout_kills_refresh_token(self, services) -> None:
        result = _register(services)
        services.sessions.logout(result.account.id)
        with pytest.raises(InvalidOrExpiredToken):
            services.sessions.refresh(result.tokens.refresh_token)

    def test_logout_twice_never_errors(self, services) -> None:
        result = _register(services)
        services.sessions.logout(result.account.id)
        services.sessions.logout(result.account.id)

    def test_logout_by_refresh_token_only(self, services) -> None:
        result = _register(services)
        services.sessions.logout(None, result.tokens.refresh_token)
        assert services.store.get_by_id(result.account.id).refresh_token_digest is None

    def test_logout_with_stale_refresh_token_keeps_live_session(self, services) -> None:
        old = _register(services).tokens
        new = services.sessions.refresh(old.refresh_token)
        services.sessions.logout(None, old.refresh_token)
        assert services.sessions.refresh(new.refresh_token) is not None

    def test_logout_with_nothing_is_noop(self, services) -> None:
        services.sessions.logout(None, None)
        services.sessions.logout(None, "garbage")


class TestFederated:
    def test_creates_verified_passwordless_account(self, services) -> None:
        result = services.sessions.login_federated("g-1", "new@example.com", "New", "User")
        assert result.account.is_verified is True
        assert result.account.password_hash is None
        assert result.account.google_id == "g-1"

    def test_links_existing_account_by_email(self, services) -> None:
        existing = services.add_account("dana@example.com", is_verified=False)
        result = services.sessions.login_federated("g-2", "dana@example.com")
        assert result.account.id == existing.id
        assert result.account.google_id == "g-2"
        assert result.account.is_verified is True
        # The password still works after linking.
        assert services.sessions.login("dana@example.com", "Passw0rd").account.id == existing.id

    def test_reuses_linked_identity(self, services) -> None:
        first = services.sessions.login_federated("g-3", "eli@example.com")
        second = services.sessions.login_federated("g-3", "eli@example.com")
        assert first.account.id == second.account.id

    def test_admin_email_promoted(self, services) -> None:
        sessions = SessionService(
            services.store,
            services.hasher,
            services.issuer,
            services.verification,
            admin_email="Boss@Example.com",
        )
        result = sessions.login_federated("g-4", "boss@example.com")
        assert result.account.role is Role.admin

    def test_inactive_account_refused(self, services) -> None:
        gone = services.add_account("gone@example.com", is_active=False, is_verified=False)
        with pytest.raises(InvalidCredentials):
            services.sessions.login_federated("g-5", "gone@example.com")
        after = services.store.get_by_id(gone.id)
        assert after.google_id is None
        assert after.is_verified is False
        assert after.refresh_token_digest is None

    def test_inactive_admin_email_not_promoted(self, services) -> None:
        gone = services.add_account("boss@example.com", is_active=False)
        sessions = SessionService(
            services.store,
            services.hasher,
            services.issuer,
            services.verification,
            admin_email="boss@example.com",
        )
        with pytest.raises(InvalidCredentials):
            sessions.login_federated("g-6", "boss@example.com")
        assert services.store.get_by_id(gone.id).role is Role.user


class TestProfile:
    def test_update_profile(self, services) -> None:
        account = services.add_account("fay@example.com")
        updated = services.sessions.update_profile(account.id, first_name="Fay", currency="EUR")
        assert updated.first_name == "Fay"
        assert updated.currency == "EUR"

    def test_missing_account(self, services) -> None:
        with pytest.raises(NotFound):
            services.sessions.get_profile("missing")
        with pytest.raises(NotFound):
            services.sessions.update_profile("missing", language="en")
