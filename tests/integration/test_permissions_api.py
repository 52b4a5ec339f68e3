"""API tests for catalog, checks and per-user overrides."""
from app.features.permissions.catalog import DEFAULT_CATALOG, SYSTEM_ROLES


def test_available_permissions(client, acme):
    response = client.get("/permissions/available", headers=acme.headers("member"))
    assert response.status_code == 200

    groups = response.json()["groups"]
    assert list(groups)[0] == "crm"
    assert groups["crm"]["label_en"] == "CRM"
    keys = {p["key"] for group in groups.values() for p in group["permissions"]}
    assert keys == DEFAULT_CATALOG.keys


def test_requests_without_token_are_rejected(client):
    assert client.get("/permissions/me").status_code in (401, 403)
    bad = client.get("/permissions/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert bad.status_code == 401


def test_my_permissions_match_role(client, acme):
    response = client.get("/permissions/me", headers=acme.headers("agent"))
    assert response.status_code == 200

    data = response.json()
    assert data["role"] == "agent"
    assert set(data["rolePermissions"]) == SYSTEM_ROLES["agent"]["permissions"]
    assert set(data["effective_permissions"]) == SYSTEM_ROLES["agent"]["permissions"]
    assert data["has_custom_overrides"] is False
    assert data["permissions_version"] == 0


def test_check_permission(client, acme):
    headers = acme.headers("member")

    def check(key):
        response = client.post("/permissions/check", json={"permission": key}, headers=headers)
        assert response.status_code == 200
        return response.json()

    assert check("contacts.view")["has_permission"] is True
    assert check("contacts.delete") == {"permission": "contacts.delete", "has_permission": False, "reason": "Permission denied"}
    assert check("ghosts.view")["reason"] == "Unknown permission"
    assert check("ghosts")["reason"] == "Invalid permission key"


def test_override_changes_effective_permissions(client, acme):
    """Role {view, edit, ...}; grant contacts.delete; revoke contacts.edit."""
    agent_id = acme.users["agent"]
    response = client.patch(
        f"/permissions/users/{agent_id}",
        json={"grant": ["contacts.delete"], "revoke": ["contacts.edit"]},
        headers=acme.headers("admin"),
    )
    assert response.status_code == 200

    data = response.json()
    assert data["permissions"] == {"grant": ["contacts.delete"], "revoke": ["contacts.edit"]}
    assert data["permissions_version"] == 1
    assert data["has_custom_overrides"] is True
    assert "contacts.delete" in data["effective_permissions"]
    assert "contacts.view" in data["effective_permissions"]
    assert "contacts.edit" not in data["effective_permissions"]

    me = client.get("/users/me", headers=acme.headers("agent")).json()
    assert me["permissions"] == {"grant": ["contacts.delete"], "revoke": ["contacts.edit"]}
    assert "contacts.edit" in me["rolePermissions"]
    assert "contacts.edit" not in me["effective_permissions"]


def test_override_is_a_full_replacement(client, acme):
    agent_id = acme.users["agent"]
    headers = acme.headers("admin")
    client.patch(f"/permissions/users/{agent_id}", json={"grant": ["contacts.delete"], "revoke": []}, headers=headers)

    response = client.patch(f"/permissions/users/{agent_id}", json={"grant": [], "revoke": []}, headers=headers)
    assert response.status_code == 200
    assert response.json()["permissions"] == {"grant": [], "revoke": []}
    assert response.json()["has_custom_overrides"] is False
    assert response.json()["permissions_version"] == 2


def test_overrides_that_change_nothing_are_dropped(client, acme):
    agent_id = acme.users["agent"]
    response = client.patch(
        f"/permissions/users/{agent_id}",
        json={"grant": ["contacts.view", "contacts.delete"], "revoke": ["campaigns.send"]},
        headers=acme.headers("admin"),
    )
    assert response.status_code == 200

    data = response.json()
    assert data["permissions"] == {"grant": ["contacts.delete"], "revoke": []}
    assert "contacts.view" in data["effective_permissions"]

    only_redundant = client.patch(
        f"/permissions/users/{agent_id}",
        json={"grant": ["contacts.view"]},
        headers=acme.headers("admin"),
    ).json()
    assert only_redundant["permissions"] == {"grant": [], "revoke": []}
    assert only_redundant["has_custom_overrides"] is False


def test_permission_managers_can_read_overrides_without_users_view(client, acme):
    member_id = acme.users["member"]
    client.patch(
        f"/permissions/users/{member_id}",
        json={"grant": ["permissions.manage"], "revoke": ["users.view"]},
        headers=acme.headers("admin"),
    )
    headers = acme.headers("member")
    url = f"/permissions/users/{acme.users['agent']}"
    assert client.get(url, headers=headers).status_code == 200
    assert client.get(f"{url}/matrix", headers=headers).json()["matrix"]["disabled"] is False

    client.patch(f"/permissions/users/{member_id}", json={"revoke": ["users.view"]}, headers=acme.headers("admin"))
    denied = client.get(url, headers=headers)
    assert denied.status_code == 403
    assert denied.json()["required"] == ["users.view", "permissions.manage"]


def test_revoked_permission_is_enforced_by_api(client, acme):
    member_id = acme.users["member"]
    assert client.get("/users/", headers=acme.headers("member")).status_code == 200

    client.patch(
        f"/permissions/users/{member_id}",
        json={"grant": [], "revoke": ["users.view"]},
        headers=acme.headers("admin"),
    )

    response = client.get("/users/", headers=acme.headers("member"))
    assert response.status_code == 403
    assert response.json() == {
        "error": "Insufficient permissions",
        "code": "INSUFFICIENT_PERMISSIONS",
        "required": ["users.view"],
    }


def test_granted_permission_opens_endpoint(client, acme):
    manager_id = acme.users["manager"]
    assert client.get("/permissions/audit-logs", headers=acme.headers("manager")).status_code == 403

    client.patch(
        f"/permissions/users/{manager_id}",
        json={"grant": ["permissions.manage"]},
        headers=acme.headers("admin"),
    )
    assert client.get("/permissions/audit-logs", headers=acme.headers("manager")).status_code == 200


def test_only_permission_managers_may_edit_overrides(client, acme):
    response = client.patch(
        f"/permissions/users/{acme.users['agent']}",
        json={"grant": ["contacts.delete"]},
        headers=acme.headers("manager"),
    )
    assert response.status_code == 403
    assert response.json()["code"] == "INSUFFICIENT_PERMISSIONS"

    unchanged = client.get(f"/permissions/users/{acme.users['agent']}", headers=acme.headers("admin")).json()
    assert unchanged["permissions"] == {"grant": [], "revoke": []}


def test_admin_targets_cannot_be_overridden(client, acme):
    response = client.patch(
        f"/permissions/users/{acme.users['admin']}",
        json={"revoke": ["contacts.view"]},
        headers=acme.headers("admin"),
    )
    assert response.status_code == 400
    assert response.json()["code"] == "ADMIN_OVERRIDE_FORBIDDEN"


def test_invalid_overrides_are_rejected(client, acme):
    url = f"/permissions/users/{acme.users['agent']}"
    headers = acme.headers("admin")

    malformed = client.patch(url, json={"grant": ["Contacts View"]}, headers=headers)
    assert malformed.status_code == 400
    assert malformed.json()["code"] == "INVALID_PERMISSION_KEY"

    overlap = client.patch(url, json={"grant": ["contacts.delete"], "revoke": ["contacts.delete"]}, headers=headers)
    assert overlap.status_code == 400
    assert overlap.json()["code"] == "OVERRIDE_OVERLAP"

    summary = client.get(url, headers=headers).json()
    assert summary["permissions_version"] == 0


def test_unknown_keys_are_stored_but_inert(client, acme):
    response = client.patch(
        f"/permissions/users/{acme.users['member']}",
        json={"grant": ["spaceships.launch"]},
        headers=acme.headers("admin"),
    )
    assert response.status_code == 200
    assert response.json()["permissions"]["grant"] == ["spaceships.launch"]
    assert "spaceships.launch" not in response.json()["effective_permissions"]


def test_version_conflict(client, acme):
    url = f"/permissions/users/{acme.users['agent']}"
    headers = acme.headers("admin")

    first = client.patch(url, json={"grant": ["contacts.delete"], "version": 0}, headers=headers)
    assert first.status_code == 200
    assert first.json()["permissions_version"] == 1

    stale = client.patch(url, json={"grant": ["deals.delete"], "version": 0}, headers=headers)
    assert stale.status_code == 409
    assert stale.json()["code"] == "VERSION_CONFLICT"
    assert stale.json()["current_version"] == 1

    current = client.get(url, headers=headers).json()
    assert current["permissions"]["grant"] == ["contacts.delete"]

    # Without a version the last write wins
    assert client.patch(url, json={"grant": ["deals.delete"]}, headers=headers).status_code == 200


def test_other_organizations_users_are_invisible(client, acme, globex):
    url = f"/permissions/users/{globex.users['member']}"
    assert client.get(url, headers=acme.headers("admin")).status_code == 404
    assert client.patch(url, json={"grant": ["contacts.delete"]}, headers=acme.headers("admin")).status_code == 404


def test_matrix_for_editor(client, acme):
    client.patch(
        f"/permissions/users/{acme.users['agent']}",
        json={"grant": ["contacts.delete"], "revoke": ["contacts.edit"]},
        headers=acme.headers("admin"),
    )

    response = client.get(f"/permissions/users/{acme.users['agent']}/matrix", headers=acme.headers("admin"))
    assert response.status_code == 200

    data = response.json()
    matrix = data["matrix"]
    assert data["modules"][0] == "crm"
    assert matrix["module"] == "crm"
    assert matrix["disabled"] is False
    assert [c["key"] for c in matrix["columns"]] == ["view", "create", "edit", "delete", "export"]

    contacts = next(r for r in matrix["rows"] if r["resource"] == "contacts")
    states = {c["action"]: c["state"] for c in contacts["cells"]}
    assert states == {"view": "default", "create": "default", "edit": "revoked", "delete": "granted", "export": "off"}

    segments = next(r for r in matrix["rows"] if r["resource"] == "segments")
    assert segments["cells"][-1] is None


def test_matrix_is_read_only_for_viewers_and_admin_targets(client, acme):
    as_member = client.get(f"/permissions/users/{acme.users['agent']}/matrix", headers=acme.headers("member"))
    assert as_member.status_code == 200
    assert as_member.json()["matrix"]["disabled"] is True

    admin_target = client.get(
        f"/permissions/users/{acme.users['admin']}/matrix?module=team", headers=acme.headers("admin")
    )
    assert admin_target.json()["matrix"]["disabled"] is True
    assert admin_target.json()["matrix"]["notice"] == "admin"

    unknown = client.get(f"/permissions/users/{acme.users['agent']}/matrix?module=billing", headers=acme.headers("admin"))
    assert unknown.status_code == 404
    assert unknown.json()["code"] == "MODULE_NOT_FOUND"


def test_override_changes_are_audited(client, acme):
    agent_id = acme.users["agent"]
    client.patch(f"/permissions/users/{agent_id}", json={"grant": ["contacts.delete"]}, headers=acme.headers("admin"))

    response = client.get(
        "/permissions/audit-logs",
        params={"resource_type": "user_permissions"},
        headers=acme.headers("admin"),
    )
    assert response.status_code == 200

    data = response.json()
    assert data["total"] == 1
    entry = data["items"][0]
    assert entry["user_id"] == acme.users["admin"]
    assert entry["resource_id"] == agent_id
    assert entry["details"]["current"] == {"grant": ["contacts.delete"], "revoke": []}
    assert entry["details"]["added"] == ["contacts.delete"]
    assert entry["details"]["version"] == 1


def test_rejected_override_writes_no_audit_row(client, acme):
    client.patch(
        f"/permissions/users/{acme.users['agent']}",
        json={"grant": ["contacts.delete"], "version": 5},
        headers=acme.headers("admin"),
    )
    logs = client.get("/permissions/audit-logs", headers=acme.headers("admin")).json()
    assert logs["total"] == 0
