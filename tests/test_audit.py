"""
tests/test_audit.py -- Unit tests for audit.store.AuditStore.

Covers:
  - with_audit_log records previous/new values on success
  - with_audit_log records success=False + error and re-raises on failure
  - a broken audit sink never fails the audited operation
  - get_audit_log filters, ordering and paging
  - entries outside the action / resource vocabularies are refused
  - log_api_request / list_api_requests with totals and hashed IPs
"""

from __future__ import annotations

import pytest
from conftest import make_db_url
from sqlalchemy.exc import OperationalError

from audit.store import AuditLogEntry, AuditStore, hash_ip


@pytest.fixture
def audit():
    store = AuditStore(db_url=make_db_url("audit"))
    yield store
    store.close()


class _BrokenEngine:
    def begin(self):
        raise OperationalError("INSERT", {}, Exception("disk I/O error"))

    def dispose(self):
        pass


def _entry(**overrides) -> AuditLogEntry:
    values = {"account_id": "acct-1", "action": "role.update", "resource_type": "user", "resource_id": "0xabc"}
    values.update(overrides)
    return AuditLogEntry(**values)


def test_with_audit_log_records_success(audit):
    result = audit.with_audit_log(
        _entry(),
        lambda: "admin",
        get_previous_value=lambda: {"role": "user"},
        to_new_value=lambda role: {"role": role},
    )
    assert result == "admin"
    [entry] = audit.get_audit_log(action="role.update")
    assert entry.success is True
    assert entry.previous_value == {"role": "user"}
    assert entry.new_value == {"role": "admin"}
    assert entry.id and entry.created_at


def test_with_audit_log_records_failure_and_reraises(audit):
    def boom():
        raise RuntimeError("target vanished")

    with pytest.raises(RuntimeError, match="target vanished"):
        audit.with_audit_log(_entry(action="permission.grant"), boom)

    [entry] = audit.get_audit_log(action="permission.grant")
    assert entry.success is False
    assert entry.error_message == "target vanished"
    assert entry.new_value is None


def test_broken_sink_does_not_fail_operation(audit, monkeypatch):
    monkeypatch.setattr(audit, "engine", _BrokenEngine())
    assert audit.log_admin_audit(_entry()) is None
    assert audit.with_audit_log(_entry(), lambda: 42) == 42
    audit.log_api_request("/api/v1/user", "GET", 200)


def test_get_audit_log_filters_and_pages(audit):
    audit.log_admin_audit(_entry(account_id="a", action="role.update", resource_id="0x1"))
    audit.log_admin_audit(_entry(account_id="a", action="permission.grant", resource_type="permission", resource_id="b"))
    audit.log_admin_audit(_entry(account_id="b", action="permission.revoke", resource_type="permission", resource_id="a"))

    assert len(audit.get_audit_log()) == 3
    assert {e.action for e in audit.get_audit_log(account_id="a")} == {"role.update", "permission.grant"}
    assert [e.action for e in audit.get_audit_log(resource_type="permission", resource_id="a")] == [
        "permission.revoke"
    ]
    assert len(audit.get_audit_log(limit=2)) == 2
    assert len(audit.get_audit_log(limit=2, offset=2)) == 1


def test_get_audit_entry(audit):
    entry_id = audit.log_admin_audit(_entry(metadata={"permission": "view_users"}))
    entry = audit.get_audit_entry(entry_id)
    assert entry.metadata == {"permission": "view_users"}
    assert audit.get_audit_entry("missing") is None


@pytest.mark.parametrize("overrides", [{"action": "role.delete"}, {"resource_type": "wallet"}])
def test_entry_rejects_unknown_vocabulary(audit, overrides):
    with pytest.raises(ValueError):
        _entry(**overrides)
    assert audit.get_audit_log() == []


def test_api_requests_are_scoped_and_counted(audit):
    for status in (200, 401, 200):
        audit.log_api_request("/api/v1/user", "GET", status, account_id="acct-1", response_time_ms=3, ip="10.0.0.1")
    audit.log_api_request("/api/v1/user", "PATCH", 200, account_id="acct-2")

    entries, total = audit.list_api_requests("acct-1", limit=2)
    assert total == 3
    assert len(entries) == 2
    assert all(e.account_id == "acct-1" for e in entries)
    assert entries[0].ip_hash == hash_ip("10.0.0.1")
    assert entries[0].ip_hash != "10.0.0.1"


def test_hash_ip_handles_missing_ip():
    assert hash_ip(None) == hash_ip("unknown")
    assert len(hash_ip("127.0.0.1")) == 64
