from __future__ import annotations

import pytest

from fakes import make_world, new_user
from userhub.errors import UserInputError, UserNotFound


def _setup(n_users: int = 3, **env):
    w = make_world(**env)
    group = w.groups.create_group({"name": "Ops", "color": "#ff0000"})
    users = [new_user(w) for _ in range(n_users)]
    return w, group, users


def _member_ids(w, group_id):
    return sorted(u["id"] for u in w.groups.find_group_members(group_id))


def test_sync_adds_and_removes_in_one_transaction():
    w, group, (a, b, c) = _setup()
    w.groups.set_group_members(group["id"], [a["id"], b["id"]])
    assert _member_ids(w, group["id"]) == sorted([a["id"], b["id"]])

    res = w.groups.set_group_members(group["id"], [b["id"], c["id"]], action_by="admin-1")
    assert res.ok
    assert res.added == [c["id"]]
    assert res.removed == [a["id"]]
    assert _member_ids(w, group["id"]) == sorted([b["id"], c["id"]])
    assert w.users_repo.transactions == 2

    tail = w.audit_repo.records[-2:]
    assert {"actor": "admin-1", "subject": a["id"], "action": "groupMemberRemoved"} in tail
    assert {"actor": "admin-1", "subject": c["id"], "action": "groupMemberAdded"} in tail


def test_sync_is_idempotent_and_silent():
    w, group, (a, b, _c) = _setup()
    w.groups.set_group_members(group["id"], [a["id"], b["id"]])
    audits = len(w.audit_repo.records)
    txs = w.users_repo.transactions

    res = w.groups.set_group_members(group["id"], [b["id"], a["id"], a["id"], " ", ""])
    assert res.ok
    assert res.added == [] and res.removed == []
    assert len(w.audit_repo.records) == audits
    assert w.users_repo.transactions == txs


def test_empty_desired_removes_everyone():
    w, group, users = _setup()
    w.groups.set_group_members(group["id"], [u["id"] for u in users])

    res = w.groups.set_group_members(group["id"], [])
    assert sorted(res.removed) == sorted(u["id"] for u in users)
    assert _member_ids(w, group["id"]) == []


def test_failed_transaction_applies_nothing_and_reports_every_action():
    w, group, (a, b, _c) = _setup()
    w.groups.set_group_members(group["id"], [a["id"]])
    audits = len(w.audit_repo.records)

    res = w.groups.set_group_members(group["id"], [b["id"], "ghost"])
    assert not res.ok
    assert res.added == [] and res.removed == []
    by_user = {f["userId"]: f for f in res.failed}
    assert by_user == {
        a["id"]: {"userId": a["id"], "operation": "remove", "error": "transactionCancelled"},
        b["id"]: {"userId": b["id"], "operation": "add", "error": "transactionCancelled"},
        "ghost": {"userId": "ghost", "operation": "add", "error": "ConditionalCheckFailed"},
    }
    # all-or-nothing: a is still a member, b was not added
    assert _member_ids(w, group["id"]) == [a["id"]]
    assert len(w.audit_repo.records) == audits


def test_soft_deleted_member_does_not_churn_audit():
    w, group, (a, b, _c) = _setup()
    w.groups.set_group_members(group["id"], [a["id"], b["id"]])
    w.users.delete_user(b["id"])
    audits = len(w.audit_repo.records)
    txs = w.users_repo.transactions

    for _ in range(2):
        res = w.groups.set_group_members(group["id"], [a["id"], b["id"]])
        assert res.ok
        assert res.added == [] and res.removed == []
    assert len(w.audit_repo.records) == audits
    assert w.users_repo.transactions == txs


def test_empty_desired_also_clears_soft_deleted_members():
    w, group, (a, b, _c) = _setup()
    w.groups.set_group_members(group["id"], [a["id"], b["id"]])
    w.users.delete_user(a["id"])

    res = w.groups.set_group_members(group["id"], [])
    assert sorted(res.removed) == sorted([a["id"], b["id"]])
    assert w.users_repo.items[a["id"]]["groups"] == []
    assert w.users_repo.items[b["id"]]["groups"] == []


def test_soft_deleted_user_is_never_added():
    w, group, (a, b, _c) = _setup()
    w.users.delete_user(b["id"])
    audits = len(w.audit_repo.records)

    res = w.groups.set_group_members(group["id"], [a["id"], b["id"]], action_by="admin-1")
    assert not res.ok
    assert res.added == [a["id"]]
    assert res.failed == [{"userId": b["id"], "operation": "add", "error": "user.deleted"}]
    assert group["id"] not in (w.users_repo.items[b["id"]].get("groups") or [])
    added = [r["subject"] for r in w.audit_repo.records[audits:] if r["action"] == "groupMemberAdded"]
    assert added == [a["id"]]


def test_large_change_set_reports_partial_failures():
    w, group, (a, b, c) = _setup(GROUP_SYNC_TRANSACTION_LIMIT=1)
    w.users_repo.fail_users.add(b["id"])

    res = w.groups.set_group_members(group["id"], [a["id"], b["id"], c["id"]])
    assert w.users_repo.transactions == 0
    assert not res.ok
    assert sorted(res.added) == sorted([a["id"], c["id"]])
    assert [f["userId"] for f in res.failed] == [b["id"]]
    assert res.failed[0]["operation"] == "add"
    assert _member_ids(w, group["id"]) == sorted([a["id"], c["id"]])

    actions = [r for r in w.audit_repo.records if r["action"] == "groupMemberAdded"]
    assert sorted(r["subject"] for r in actions) == sorted([a["id"], c["id"]])

    d = res.to_dict()
    assert d["ok"] is False
    assert d["groupId"] == group["id"]


def test_unknown_group_is_not_found():
    w, _group, (a, _b, _c) = _setup()
    with pytest.raises(UserNotFound):
        w.groups.set_group_members("nope", [a["id"]])


def test_group_crud():
    w, group, _users = _setup(0)
    assert w.groups.find_group(group["id"])["name"] == "Ops"
    assert [g["id"] for g in w.groups.find_groups(name="ops")] == [group["id"]]

    out = w.groups.update_group(group["id"], {"name": "Operations"})
    assert out["name"] == "Operations"

    with pytest.raises(UserNotFound):
        w.groups.update_group("missing", {"name": "X"})
    with pytest.raises(UserInputError):
        w.groups.create_group({"name": ""})
