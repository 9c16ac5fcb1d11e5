from __future__ import annotations

import pytest

from fakes import make_world, new_user
from userhub.errors import PersistenceError, UserInputError, UserNotFound, WrongCredential


def test_create_user_hashes_password_and_audits_once():
    w = make_world()
    user = w.users.create_user(
        {"username": "ann", "password": "correct-horse", "name": "Ann", "email": "Ann@Example.com"},
        action_by="admin-1",
    )
    assert "password" not in user
    stored = w.users_repo.items[user["id"]]
    assert stored["password"] != "correct-horse"
    assert w.hasher.verify("correct-horse", stored["password"])
    assert w.audit_repo.records == [{"actor": "admin-1", "subject": user["id"], "action": "userCreated"}]


def test_create_user_system_action_has_no_actor():
    w = make_world()
    user = new_user(w)
    assert w.audit_repo.records[-1] == {"actor": None, "subject": user["id"], "action": "userCreated"}


def test_create_user_validation_errors_are_field_level():
    w = make_world()
    with pytest.raises(UserInputError) as ei:
        w.users.create_user({"username": "a", "password": "correct-horse", "name": "", "email": "nope"})
    errs = ei.value.input_errors
    assert {"username", "name", "email"} <= set(errs)
    assert w.users_repo.items == {}
    assert w.audit_repo.records == []


def test_create_user_short_password():
    w = make_world()
    with pytest.raises(UserInputError) as ei:
        w.users.create_user({"username": "ann", "password": "short", "name": "Ann", "email": "ann@example.com"})
    assert "password" in ei.value.input_errors


def test_duplicate_username_is_a_unique_field_error():
    w = make_world()
    new_user(w, username="ann", email="ann@example.com")
    with pytest.raises(UserInputError) as ei:
        new_user(w, username="ANN", email="other@example.com")
    assert ei.value.message == "validation.unique"
    assert ei.value.input_errors["username"]["message"] == "validation.unique"
    assert "email" not in ei.value.input_errors


def test_update_user_and_audit():
    w = make_world()
    user = new_user(w)
    out = w.users.update_user(user["id"], {"name": "Renamed", "phone": "+1 555"}, action_by=user["id"])
    assert out["name"] == "Renamed"
    assert out["phone"] == "+1 555"
    assert w.audit_repo.actions() == ["userCreated", "userModified"]


def test_update_missing_or_deleted_user_is_not_found():
    w = make_world()
    with pytest.raises(UserNotFound):
        w.users.update_user("missing", {"name": "X"})

    user = new_user(w)
    w.users.delete_user(user["id"])
    with pytest.raises(UserNotFound):
        w.users.update_user(user["id"], {"name": "X"})


def test_soft_delete_excludes_user_from_reads():
    w = make_world()
    keep = new_user(w)
    gone = new_user(w)

    assert w.users.delete_user(gone["id"], action_by=keep["id"]) == {"success": True, "id": gone["id"]}

    assert w.users_repo.items[gone["id"]]["deleted"] is True
    assert w.users.find_user(gone["id"]) is None
    assert w.users.find_user(gone["id"], include_deleted=True)["id"] == gone["id"]
    assert w.users.find_user_by_username(gone["username"]) is None
    assert [u["id"] for u in w.users.find_users()] == [keep["id"]]
    page = w.users.paginate_users(10)
    assert page["totalItems"] == 1
    assert w.audit_repo.records[-1] == {"actor": keep["id"], "subject": gone["id"], "action": "userDeleted"}


def test_delete_twice_is_not_found():
    w = make_world()
    user = new_user(w)
    w.users.delete_user(user["id"])
    with pytest.raises(UserNotFound):
        w.users.delete_user(user["id"])


def test_find_users_by_role():
    w = make_world()
    admin = new_user(w, role="admin")
    new_user(w, role="member")
    assert [u["id"] for u in w.users.find_users(roles=["admin"])] == [admin["id"]]


def test_paginate_search_order_and_pages():
    w = make_world()
    for name in ("Charlie", "alice", "Bob", "Alicia"):
        new_user(w, name=name)

    page = w.users.paginate_users(2, page=1, search="^ali", order_by="name")
    assert page["totalItems"] == 2
    assert [u["name"] for u in page["users"]] == ["alice", "Alicia"]

    page2 = w.users.paginate_users(2, page=2, order_by="name", order_desc=True)
    assert page2["page"] == 2
    assert [u["name"] for u in page2["users"]] == ["Alicia", "alice"]


def test_paginate_invalid_regex_is_matched_literally():
    w = make_world()
    new_user(w, name="weird (name")
    new_user(w, name="plain")
    page = w.users.paginate_users(10, search="(")
    assert [u["name"] for u in page["users"]] == ["weird (name"]


def test_admin_change_password_mismatch_is_a_value():
    w = make_world()
    user = new_user(w)
    before = w.users_repo.items[user["id"]]["password"]
    audits = len(w.audit_repo.records)

    out = w.users.admin_change_password(user["id"], "new-password-1", "new-password-2", action_by="admin-1")
    assert out == {"status": False, "message": "Password doesn't match"}
    assert w.users_repo.items[user["id"]]["password"] == before
    assert len(w.audit_repo.records) == audits


def test_admin_change_password_audit_depends_on_actor():
    w = make_world()
    user = new_user(w)

    out = w.users.admin_change_password(user["id"], "new-password-1", "new-password-1", action_by="admin-1")
    assert out == {"status": True, "message": "PasswordChange", "operation": "changePasswordAdmin"}
    assert w.audit_repo.actions()[-1] == "changePasswordAdmin"
    assert w.hasher.verify("new-password-1", w.users_repo.items[user["id"]]["password"])

    w.users.admin_change_password(user["id"], "new-password-2", "new-password-2", action_by=user["id"])
    assert w.audit_repo.actions()[-1] == "userPasswordChange"


def test_change_password_wrong_current_never_touches_hash():
    w = make_world()
    user = new_user(w)
    before = w.users_repo.items[user["id"]]["password"]

    with pytest.raises(WrongCredential) as ei:
        w.users.change_password(user["id"], "not-my-password", "new-password-1", action_by=user["id"])
    assert ei.value.input_errors["currentPassword"]["message"] == "auth.wrongPassword"
    assert isinstance(ei.value, UserInputError)
    assert w.users_repo.items[user["id"]]["password"] == before
    assert w.users_repo.password_writes == 0


def test_change_password_success():
    w = make_world()
    user = new_user(w)
    out = w.users.change_password(user["id"], "correct-horse", "new-password-1", action_by=user["id"])
    assert out == {"status": True, "message": "Password Changed"}
    assert w.hasher.verify("new-password-1", w.users_repo.items[user["id"]]["password"])
    assert w.audit_repo.actions()[-1] == "userPasswordChange"

    w.users.change_password(user["id"], "new-password-1", "new-password-2", action_by="admin-1")
    assert w.audit_repo.actions()[-1] == "adminPasswordChange"


def test_audit_failure_does_not_fail_the_operation():
    w = make_world()
    w.audit_repo.fail = True
    user = new_user(w)
    assert w.users_repo.items[user["id"]]
    assert w.audit_repo.records == []


def test_storage_failure_is_opaque_persistence_error():
    w = make_world()
    user = new_user(w)
    w.users_repo.fail_all = True
    with pytest.raises(PersistenceError) as ei:
        w.users.find_user(user["id"])
    assert ei.value.message == "common.operation.fail"
