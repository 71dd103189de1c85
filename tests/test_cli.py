"""
tests/test_cli.py -- Tests for the operator commands in main.py.

The command functions are called directly with the test store; main() itself
is exercised once with DATABASE_URL pointed at a temporary file.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import main as cli
from auth.models import Role
from auth.store import AccountStore, iso
from core.config import get_settings


class TestCreateAdmin:
    def test_creates_verified_admin(self, services, capsys) -> None:
        code = cli.create_admin(services.store, services.hasher, "Root@Example.com", "Adm1nPass")
        assert code == 0
        admin = services.store.get_by_email("root@example.com")
        assert admin.role is Role.admin
        assert admin.is_verified is True
        assert services.hasher.verify("Adm1nPass", admin.password_hash)
        assert "Admin account created" in capsys.readouterr().out

    def test_refuses_second_admin(self, services, capsys) -> None:
        services.add_account("first@example.com", role=Role.admin)
        code = cli.create_admin(services.store, services.hasher, "second@example.com", "Adm1nPass")
        assert code == 1
        assert services.store.get_by_email("second@example.com") is None
        assert "already exists" in capsys.readouterr().out

    def test_refuses_weak_password(self, services) -> None:
        assert cli.create_admin(services.store, services.hasher, "root@example.com", "weak") == 1
        assert services.store.get_by_email("root@example.com") is None

    def test_refuses_taken_email(self, services) -> None:
        services.add_account("taken@example.com")
        assert cli.create_admin(services.store, services.hasher, "taken@example.com", "Adm1nPass") == 1


class TestPurgeExpired:
    def test_reports_cleared_rows(self, services, capsys) -> None:
        account = services.add_account("stale@example.com", is_verified=False)
        past = iso(datetime.now(timezone.utc) - timedelta(hours=1))
        services.store.set_email_verification(account.id, "digest", past)
        assert cli.purge_expired(services.store) == 0
        assert "Cleared 1 expired" in capsys.readouterr().out
        assert services.store.get_by_id(account.id).email_verification_digest is None


def test_main_runs_against_configured_database(tmp_path, monkeypatch) -> None:
    db_url = f"sqlite:///{tmp_path / 'cli.db'}"
    monkeypatch.setenv("DATABASE_URL", db_url)
    monkeypatch.setenv("BCRYPT_ROUNDS", "4")
    get_settings.cache_clear()
    try:
        assert cli.main(["create-admin", "--email", "ops@example.com", "--password", "Adm1nPass"]) == 0
        assert cli.main(["purge-expired"]) == 0
    finally:
        get_settings.cache_clear()

    store = AccountStore(db_url)
    try:
        assert store.get_by_email("ops@example.com").role is Role.admin
    finally:
        store.close()
