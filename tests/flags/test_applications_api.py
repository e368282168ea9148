"""
HTTP tests for the management API.
"""

from uuid import uuid4

import pytest

pytestmark = pytest.mark.integration

BASE = "/api/v1/applications"


async def _create_app(client, name="Checkout", headers=None) -> dict:
    response = await client.post(BASE, json={"name": name}, headers=headers or {})
    assert response.status_code == 201, response.text
    return response.json()


async def _create_flag(client, app_id, **payload) -> dict:
    payload.setdefault("value", "on")
    response = await client.post(f"{BASE}/{app_id}/flags", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


async def _create_tag(client, app_id, name) -> dict:
    response = await client.post(f"{BASE}/{app_id}/tags", json={"name": name})
    assert response.status_code == 201, response.text
    return response.json()


class TestApplicationEndpoints:
    async def test_create_and_get(self, client):
        created = await _create_app(client)

        assert created["name"] == "Checkout"
        assert len(created["access_key"]) == 32
        assert created["flag_count"] == 0

        response = await client.get(f"{BASE}/{created['id']}")
        assert response.status_code == 200
        assert response.json()["access_key"] == created["access_key"]

    async def test_create_rejects_blank_name(self, client):
        response = await client.post(BASE, json={"name": ""})
        assert response.status_code == 422

    async def test_list_only_callers_applications(self, client, other_headers):
        mine = await _create_app(client)
        await _create_app(client, "Theirs", headers=other_headers)
        await _create_flag(client, mine["id"], key="beta")

        response = await client.get(BASE)

        assert response.status_code == 200
        body = response.json()
        assert [a["id"] for a in body] == [mine["id"]]
        assert body[0]["flag_count"] == 1

    async def test_other_user_gets_403(self, client, other_headers):
        created = await _create_app(client)

        response = await client.get(f"{BASE}/{created['id']}", headers=other_headers)

        assert response.status_code == 403
        body = response.json()
        assert body["error_code"] == "FORBIDDEN"
        assert body["message"]

    async def test_admin_can_read_any_application(self, client, admin_headers):
        created = await _create_app(client)
        response = await client.get(f"{BASE}/{created['id']}", headers=admin_headers)
        assert response.status_code == 200

    async def test_unknown_application_404(self, client):
        response = await client.get(f"{BASE}/{uuid4()}")
        assert response.status_code == 404
        assert response.json()["error_code"] == "NOT_FOUND"

    async def test_delete_then_sdk_returns_404(self, client):
        created = await _create_app(client)
        await _create_flag(client, created["id"], key="beta", enabled=True)
        assert (await client.get(f"/sdk/{created['access_key']}/flags")).status_code == 200

        response = await client.delete(f"{BASE}/{created['id']}")

        assert response.status_code == 200
        assert response.json() == {"message": "Deleted"}
        assert (await client.get(f"{BASE}/{created['id']}")).status_code == 404
        assert (await client.get(f"/sdk/{created['access_key']}/flags")).status_code == 404


class TestFlagEndpoints:
    async def test_create_flag_defaults(self, client):
        app = await _create_app(client)
        flag = await _create_flag(client, app["id"], key="beta")

        assert flag["display_name"] == "beta"
        assert flag["enabled"] is False
        assert flag["type"] == "BOOLEAN"
        assert flag["tags"] == []

    async def test_duplicate_key_409(self, client):
        app = await _create_app(client)
        await _create_flag(client, app["id"], key="beta")

        response = await client.post(f"{BASE}/{app['id']}/flags", json={"key": "beta", "value": "x"})

        assert response.status_code == 409
        assert response.json()["error_code"] == "CONFLICT"

    @pytest.mark.parametrize(
        "payload",
        [
            {"key": "beta"},
            {"key": "beta", "value": "   "},
            {"key": "   ", "value": "on"},
            {"key": "cfg", "type": "JSON", "value": "{nope"},
            {"key": "big", "type": "STRING", "value": "x" * 10_001},
        ],
    )
    async def test_invalid_flag_400(self, client, payload):
        app = await _create_app(client)

        response = await client.post(f"{BASE}/{app['id']}/flags", json=payload)

        assert response.status_code == 400
        assert response.json()["error_code"] == "VALIDATION_ERROR"

    async def test_update_and_list(self, client):
        app = await _create_app(client)
        beta = await _create_flag(client, app["id"], key="beta")
        await _create_flag(client, app["id"], key="maint")

        response = await client.put(
            f"{BASE}/{app['id']}/flags/{beta['id']}",
            json={"enabled": True, "display_name": "Beta programme"},
        )
        assert response.status_code == 200
        assert response.json()["enabled"] is True

        listed = (await client.get(f"{BASE}/{app['id']}/flags")).json()
        assert [f["key"] for f in listed] == ["beta", "maint"]
        assert listed[0]["display_name"] == "Beta programme"

    async def test_non_owner_cannot_update(self, client, other_headers):
        app = await _create_app(client)
        beta = await _create_flag(client, app["id"], key="beta")

        response = await client.put(
            f"{BASE}/{app['id']}/flags/{beta['id']}",
            json={"enabled": True},
            headers=other_headers,
        )

        assert response.status_code == 403

    async def test_delete_flag(self, client):
        app = await _create_app(client)
        beta = await _create_flag(client, app["id"], key="beta")

        response = await client.delete(f"{BASE}/{app['id']}/flags/{beta['id']}")

        assert response.status_code == 200
        assert (await client.get(f"{BASE}/{app['id']}/flags/{beta['id']}")).status_code == 404

    async def test_sdk_sees_toggle_immediately(self, client):
        app = await _create_app(client)
        beta = await _create_flag(client, app["id"], key="beta", enabled=False)
        sdk_url = f"/sdk/{app['access_key']}/flags"

        assert (await client.get(sdk_url)).json() == []

        await client.put(f"{BASE}/{app['id']}/flags/{beta['id']}", json={"enabled": True})

        assert [f["key"] for f in (await client.get(sdk_url)).json()] == ["beta"]


class TestTagEndpoints:
    async def test_tag_crud(self, client):
        app = await _create_app(client)
        tag = await _create_tag(client, app["id"], "backend")
        assert tag["color"] == "#3B82F6"

        response = await client.put(
            f"{BASE}/{app['id']}/tags/{tag['id']}", json={"color": "#10B981"}
        )
        assert response.status_code == 200
        assert response.json()["color"] == "#10B981"

        response = await client.delete(f"{BASE}/{app['id']}/tags/{tag['id']}")
        assert response.status_code == 200
        assert (await client.get(f"{BASE}/{app['id']}/tags")).json() == []

    async def test_duplicate_tag_409(self, client):
        app = await _create_app(client)
        await _create_tag(client, app["id"], "backend")

        response = await client.post(f"{BASE}/{app['id']}/tags", json={"name": "backend"})

        assert response.status_code == 409

    async def test_single_flag_tag_replace(self, client):
        app = await _create_app(client)
        beta = await _create_flag(client, app["id"], key="beta")
        backend = await _create_tag(client, app["id"], "backend")
        risky = await _create_tag(client, app["id"], "risky")

        url = f"{BASE}/{app['id']}/flags/{beta['id']}/tags"
        await client.post(url, json={"tag_ids": [backend["id"], risky["id"]]})
        response = await client.put(url, json={"tag_ids": [risky["id"]]})

        assert response.status_code == 200
        assert [t["name"] for t in response.json()["tags"]] == ["risky"]

    async def test_bulk_tags(self, client):
        app = await _create_app(client)
        beta = await _create_flag(client, app["id"], key="beta")
        maint = await _create_flag(client, app["id"], key="maint")
        backend = await _create_tag(client, app["id"], "backend")

        response = await client.post(
            f"{BASE}/{app['id']}/flags/bulk-tags",
            json={
                "flag_ids": [beta["id"], maint["id"]],
                "tag_ids": [backend["id"]],
                "action": "add",
            },
        )

        assert response.status_code == 200
        body = response.json()
        assert body["updated"] == 2
        assert all([t["name"] for t in f["tags"]] == ["backend"] for f in body["flags"])

    async def test_bulk_tags_empty_flag_ids_400(self, client):
        app = await _create_app(client)

        response = await client.post(
            f"{BASE}/{app['id']}/flags/bulk-tags",
            json={"flag_ids": [], "tag_ids": [], "action": "set"},
        )

        assert response.status_code == 400

    async def test_bulk_tags_unknown_action_422(self, client):
        app = await _create_app(client)

        response = await client.post(
            f"{BASE}/{app['id']}/flags/bulk-tags",
            json={"flag_ids": [str(uuid4())], "tag_ids": [], "action": "toggle"},
        )

        assert response.status_code == 422
