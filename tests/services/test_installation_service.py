"""
Tests for installation reconciliation from the setup callback and webhooks.
"""

import threading

import pytest

from graphbug.models.db.github_installations import GithubInstallation, PENDING
from graphbug.services.github.installation_service import InstallationService


def _rows(db, installation_id=42):
    return (
        db.query(GithubInstallation)
        .filter(GithubInstallation.installation_id == installation_id)
        .all()
    )


def _snapshot(installation):
    return (
        installation.installation_id,
        installation.user_id,
        installation.account_login,
        installation.account_type,
        installation.target_type,
    )


def test_callback_then_webhook_produces_one_complete_row(db, user):
    service = InstallationService(db)

    pending = service.reconcile_from_callback(user.user_id, 42)
    assert pending.is_pending
    assert pending.user_id == user.user_id

    merged = service.reconcile_from_webhook(42, "acme", "Organization", "Organization")

    rows = _rows(db)
    assert len(rows) == 1
    assert merged.user_id == user.user_id
    assert merged.account_login == "acme"
    assert merged.account_type == "Organization"
    assert merged.target_type == "Organization"


def test_webhook_then_callback_produces_the_same_row(db, user):
    service = InstallationService(db)

    first = service.reconcile_from_webhook(42, "acme", "Organization", "Organization")
    assert first.user_id is None

    merged = service.reconcile_from_callback(user.user_id, 42)

    rows = _rows(db)
    assert len(rows) == 1
    assert _snapshot(merged) == (42, user.user_id, "acme", "Organization", "Organization")


def test_reconciliation_is_order_independent(session_factory, user):
    orders = [("callback", "webhook"), ("webhook", "callback")]
    results = []

    for index, order in enumerate(orders):
        session = session_factory()
        service = InstallationService(session)
        installation_id = 100 + index
        for step in order:
            if step == "callback":
                service.reconcile_from_callback(user.user_id, installation_id)
            else:
                service.reconcile_from_webhook(installation_id, "acme", "Organization", "Organization")
        row = _rows(session, installation_id)[0]
        results.append(_snapshot(row)[1:])
        session.close()

    assert results[0] == results[1]


def test_replayed_signals_are_idempotent(db, user):
    service = InstallationService(db)

    service.reconcile_from_webhook(42, "acme", "Organization", "Organization")
    service.reconcile_from_callback(user.user_id, 42)
    once = _snapshot(_rows(db)[0])

    service.reconcile_from_webhook(42, "acme", "Organization", "Organization")
    service.reconcile_from_callback(user.user_id, 42)
    service.reconcile_from_callback(user.user_id, 42)

    rows = _rows(db)
    assert len(rows) == 1
    assert _snapshot(rows[0]) == once


def test_pending_metadata_never_overwrites_real_values(db, user):
    service = InstallationService(db)

    service.reconcile_from_webhook(42, "acme", "Organization", "Organization")
    service.reconcile_from_webhook(42, None, "", PENDING)
    installation = service.reconcile_from_callback(user.user_id, 42)

    assert installation.account_login == "acme"
    assert installation.account_type == "Organization"
    assert installation.target_type == "Organization"


def test_webhook_keeps_optional_fields_when_not_supplied(db):
    service = InstallationService(db)

    service.reconcile_from_webhook(
        42, "acme", "Organization", "Organization",
        permissions={"contents": "read"},
        repository_selection="selected",
    )
    installation = service.reconcile_from_webhook(42, "acme", "Organization", "Organization", suspended=True)

    assert installation.permissions == {"contents": "read"}
    assert installation.repository_selection == "selected"
    assert installation.suspended is True


def test_callback_does_not_clear_existing_owner(db, user):
    service = InstallationService(db)
    service.reconcile_from_callback(user.user_id, 42)

    installation = service.reconcile_from_callback(None, 42)

    assert installation.user_id == user.user_id


def test_ensure_installation_creates_placeholder_once(db):
    service = InstallationService(db)

    first = service.ensure_installation(7)
    second = service.ensure_installation(7)

    assert first.id == second.id
    assert first.is_pending
    assert len(_rows(db, 7)) == 1


def test_ensure_installation_keeps_reconciled_row(db):
    service = InstallationService(db)
    service.reconcile_from_webhook(7, "acme", "Organization", "Organization")

    installation = service.ensure_installation(7)

    assert installation.account_login == "acme"


def test_delete_installation(db):
    service = InstallationService(db)
    service.reconcile_from_webhook(42, "acme", "Organization", "Organization")

    assert service.delete_installation(42) is True
    assert service.delete_installation(42) is False
    assert service.get_by_installation_id(42) is None


@pytest.mark.parametrize("source", ["webhook", "callback", "mixed"])
def test_concurrent_reconciles_never_duplicate(session_factory, user, source):
    barrier = threading.Barrier(8)
    errors = []

    def worker(index):
        session = session_factory()
        try:
            service = InstallationService(session)
            barrier.wait()
            if source == "webhook" or (source == "mixed" and index % 2):
                service.reconcile_from_webhook(42, "acme", "Organization", "Organization")
            else:
                service.reconcile_from_callback(user.user_id, 42)
        except Exception as e:  # surfaced through the assertion below
            errors.append(e)
        finally:
            session.close()

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    check = session_factory()
    try:
        rows = _rows(check)
        assert len(rows) == 1
        if source == "mixed":
            assert rows[0].user_id == user.user_id
            assert rows[0].account_login == "acme"
    finally:
        check.close()
