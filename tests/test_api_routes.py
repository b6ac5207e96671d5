"""
tests/test_api_routes.py -- Integration tests for the REST API.

These tests exercise the full stack: FastAPI routing -> bearer token
authentication -> services and the policy table -> stores -> response model
serialization and the error handlers.

Coverage:
  - Auth flow: register, login, wrong password, logout revokes the token,
    passwords kept verbatim and limited to 72 UTF-8 bytes
  - Users: /me, self update returns a new token, 403 on someone else, admin list, delete
  - Menu and orders: public menu, admin-only menu edit, order placement with the
    factory mocked for success and failure
  - Franchises: create, public listing without detail, store create/delete by the
    franchisee, delete franchise
  - Service endpoints: welcome, docs, unknown endpoint
  - Telemetry pushes happen off the event loop

Fixtures used (from conftest.py):
  - api_client: (client, token, uid) -- admin is admin@jwt.com / adminpass
  - factory: the MagicMock FactoryClient behind the app
"""

from __future__ import annotations

import asyncio
import itertools

import pytest
from fastapi.testclient import TestClient

from core.errors import FactoryError
from core.factory import FactoryReport

_ids = itertools.count(1)


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _register(client: TestClient, name: str = "Diner") -> tuple[dict, str]:
    """Register a fresh diner with a unique email; return (user, token)."""
    email = f"diner{next(_ids)}@jwt.com"
    resp = client.post("/api/auth", json={"name": name, "email": email, "password": "diner"})
    assert resp.status_code == 200, resp.text
    body = resp.json()
    return body["user"], body["token"]


class TestAuthRoutes:
    def test_register_returns_diner_and_token(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.post("/api/auth", json={"name": "pizza diner", "email": "d@jwt.com", "password": "diner"})
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["user"]["roles"] == [{"role": "diner"}]
        assert "password" not in body["user"]
        assert body["token"].count(".") == 2
        assert resp.headers["Cache-Control"] == "no-store"

    def test_register_duplicate_email(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.post("/api/auth", json={"name": "again", "email": "admin@jwt.com", "password": "x"})
        assert resp.status_code == 409

    def test_register_missing_fields(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.post("/api/auth", json={"email": "x@jwt.com"})
        assert resp.status_code == 400
        assert "message" in resp.json()

    def test_register_password_over_72_bytes(self, api_client) -> None:
        """40 two-byte characters pass a character count but not bcrypt's byte limit."""
        client, _token, _uid = api_client
        resp = client.post("/api/auth", json={"name": "accent", "email": "accent@jwt.com", "password": "é" * 40})
        assert resp.status_code == 400
        assert resp.json() == {"message": "invalid request: password"}

    def test_update_password_over_72_bytes(self, api_client) -> None:
        client, _token, _uid = api_client
        user, token = _register(client)
        resp = client.put(f"/api/user/{user['id']}", json={"password": "é" * 40}, headers=_auth(token))
        assert resp.status_code == 400

    def test_password_whitespace_is_kept(self, api_client) -> None:
        client, _token, _uid = api_client
        creds = {"name": "  Spacey  ", "email": "spacey@jwt.com", "password": "  padded pw  "}
        resp = client.post("/api/auth", json=creds)
        assert resp.status_code == 200, resp.text
        assert resp.json()["user"]["name"] == "Spacey"

        assert client.put("/api/auth", json={"email": "spacey@jwt.com", "password": "  padded pw  "}).status_code == 200
        assert client.put("/api/auth", json={"email": "spacey@jwt.com", "password": "padded pw"}).status_code == 404

    def test_login(self, api_client) -> None:
        client, _token, uid = api_client
        resp = client.put("/api/auth", json={"email": "admin@jwt.com", "password": "adminpass"})
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["user"]["id"] == uid
        assert {"role": "admin"} in body["user"]["roles"]

    def test_wrong_password_matches_unknown_email(self, api_client) -> None:
        client, _token, _uid = api_client
        wrong = client.put("/api/auth", json={"email": "admin@jwt.com", "password": "nope"})
        unknown = client.put("/api/auth", json={"email": "ghost@jwt.com", "password": "nope"})
        assert wrong.status_code == unknown.status_code == 404
        assert wrong.json() == unknown.json() == {"message": "unknown user"}

    def test_logout_revokes_token(self, api_client) -> None:
        client, _token, _uid = api_client
        _user, token = _register(client)
        assert client.get("/api/user/me", headers=_auth(token)).status_code == 200

        resp = client.delete("/api/auth", headers=_auth(token))
        assert resp.status_code == 200
        assert resp.json() == {"message": "logout successful"}

        resp = client.get("/api/user/me", headers=_auth(token))
        assert resp.status_code == 401
        assert resp.json() == {"message": "unauthorized"}

    def test_logout_requires_auth(self, api_client) -> None:
        client, _token, _uid = api_client
        assert client.delete("/api/auth").status_code == 401


class TestUserRoutes:
    def test_me(self, api_client) -> None:
        client, token, uid = api_client
        resp = client.get("/api/user/me", headers=_auth(token))
        assert resp.status_code == 200
        assert resp.json()["id"] == uid

    def test_me_requires_auth(self, api_client) -> None:
        client, _token, _uid = api_client
        assert client.get("/api/user/me").status_code == 401
        assert client.get("/api/user/me", headers=_auth("not.a.token")).status_code == 401

    def test_update_self_returns_new_token(self, api_client) -> None:
        client, _token, _uid = api_client
        user, token = _register(client)
        resp = client.put(f"/api/user/{user['id']}", json={"name": "Renamed"}, headers=_auth(token))
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["user"]["name"] == "Renamed"
        assert body["user"]["email"] == user["email"]
        assert body["token"] != token
        assert client.get("/api/user/me", headers=_auth(body["token"])).status_code == 200

    def test_update_other_user_forbidden(self, api_client) -> None:
        client, _token, uid = api_client
        _user, token = _register(client)
        resp = client.put(f"/api/user/{uid}", json={"name": "Hijack"}, headers=_auth(token))
        assert resp.status_code == 403
        assert resp.json() == {"message": "unauthorized"}

    def test_diner_cannot_grant_self_admin(self, api_client) -> None:
        client, _token, _uid = api_client
        user, token = _register(client)
        resp = client.put(f"/api/user/{user['id']}", json={"roles": [{"role": "admin"}]}, headers=_auth(token))
        assert resp.status_code == 403

    def test_admin_assigns_roles(self, api_client) -> None:
        client, token, _uid = api_client
        user, _ = _register(client)
        resp = client.put(
            f"/api/user/{user['id']}",
            json={"roles": [{"role": "diner"}, {"role": "admin"}]},
            headers=_auth(token),
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["user"]["roles"] == [{"role": "diner"}, {"role": "admin"}]

    def test_list_users_admin(self, api_client) -> None:
        client, token, _uid = api_client
        _register(client, name="Listed Person")
        resp = client.get("/api/user", params={"page": 1, "limit": 100, "name": "Listed*"}, headers=_auth(token))
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["more"] is False
        assert {u["name"] for u in body["users"]} == {"Listed Person"}

    def test_list_users_diner_forbidden(self, api_client) -> None:
        client, _token, _uid = api_client
        _user, token = _register(client)
        assert client.get("/api/user", headers=_auth(token)).status_code == 403

    def test_delete_user(self, api_client) -> None:
        client, token, _uid = api_client
        user, user_token = _register(client)
        resp = client.delete(f"/api/user/{user['id']}", headers=_auth(token))
        assert resp.status_code == 200
        assert resp.json() == {"message": "User deleted successfully"}
        assert client.get("/api/user/me", headers=_auth(user_token)).status_code == 401

    def test_delete_missing_user(self, api_client) -> None:
        client, token, _uid = api_client
        resp = client.delete("/api/user/999999", headers=_auth(token))
        assert resp.status_code == 404
        assert resp.json() == {"message": "User not found"}


class TestMenuAndOrders:
    @pytest.fixture(scope="class")
    def store_setup(self, api_client) -> dict:
        """Menu item, franchise and store created by the admin for this class."""
        client, token, _uid = api_client
        menu = client.put(
            "/api/order/menu",
            json={"title": "Student", "description": "No topping, no sauce, just carbs", "image": "pizza9.png", "price": 0.0001},
            headers=_auth(token),
        )
        assert menu.status_code == 200, menu.text
        item = next(m for m in menu.json() if m["title"] == "Student")
        franchise = client.post("/api/franchise", json={"name": "orderTestFranchise", "admins": []}, headers=_auth(token))
        assert franchise.status_code == 200, franchise.text
        fid = franchise.json()["id"]
        store = client.post(f"/api/franchise/{fid}/store", json={"name": "SLC"}, headers=_auth(token))
        assert store.status_code == 200, store.text
        return {"item": item, "franchise_id": fid, "store_id": store.json()["id"]}

    def _order_body(self, setup: dict) -> dict:
        item = setup["item"]
        return {
            "franchiseId": setup["franchise_id"],
            "storeId": setup["store_id"],
            "items": [{"menuId": item["id"], "description": item["title"], "price": item["price"]}],
        }

    def test_menu_is_public(self, api_client, store_setup) -> None:
        client, _token, _uid = api_client
        resp = client.get("/api/order/menu")
        assert resp.status_code == 200
        assert any(m["title"] == "Student" for m in resp.json())

    def test_diner_cannot_add_menu_item(self, api_client) -> None:
        client, _token, _uid = api_client
        _user, token = _register(client)
        resp = client.put("/api/order/menu", json={"title": "Nope", "price": 1}, headers=_auth(token))
        assert resp.status_code == 403
        assert resp.json() == {"message": "unable to add menu item"}

    def test_create_order(self, api_client, store_setup, factory) -> None:
        client, _token, _uid = api_client
        factory.order.return_value = FactoryReport(jwt="pizza.jwt.sig", report_url="https://report/1")
        user, token = _register(client)

        resp = client.post("/api/order", json=self._order_body(store_setup), headers=_auth(token))
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["jwt"] == "pizza.jwt.sig"
        assert body["followLinkToEndChaos"] == "https://report/1"
        assert body["order"]["items"][0]["menuId"] == store_setup["item"]["id"]

        diner, sent = factory.order.call_args.args
        assert diner == {"id": user["id"], "name": user["name"], "email": user["email"]}
        assert sent["id"] == body["order"]["id"]

        orders = client.get("/api/order", headers=_auth(token)).json()
        assert orders["dinerId"] == user["id"]
        assert [o["id"] for o in orders["orders"]] == [body["order"]["id"]]

    def test_factory_failure(self, api_client, store_setup, factory) -> None:
        client, _token, _uid = api_client
        factory.order.side_effect = FactoryError(report_url="https://report/chaos")
        _user, token = _register(client)

        resp = client.post("/api/order", json=self._order_body(store_setup), headers=_auth(token))
        assert resp.status_code == 500
        assert resp.json() == {
            "message": "Failed to fulfill order at factory",
            "followLinkToEndChaos": "https://report/chaos",
        }
        # the order itself stays recorded
        assert len(client.get("/api/order", headers=_auth(token)).json()["orders"]) == 1

    def test_unknown_menu_item(self, api_client, store_setup, factory) -> None:
        client, _token, _uid = api_client
        _user, token = _register(client)
        body = self._order_body(store_setup)
        body["items"][0]["menuId"] = 999999
        resp = client.post("/api/order", json=body, headers=_auth(token))
        assert resp.status_code == 404
        assert resp.json() == {"message": "No ID found"}
        factory.order.assert_not_called()


class TestFranchiseRoutes:
    def test_franchise_lifecycle(self, api_client) -> None:
        client, admin_token, _uid = api_client
        owner, owner_token = _register(client, name="Franchise Owner")

        created = client.post(
            "/api/franchise",
            json={"name": "lifecyclePizza", "admins": [{"email": owner["email"]}]},
            headers=_auth(admin_token),
        )
        assert created.status_code == 200, created.text
        franchise = created.json()
        assert franchise["admins"][0]["id"] == owner["id"]

        # the owner manages stores
        store = client.post(f"/api/franchise/{franchise['id']}/store", json={"name": "Provo"}, headers=_auth(owner_token))
        assert store.status_code == 200, store.text
        mine = client.get(f"/api/franchise/{owner['id']}", headers=_auth(owner_token)).json()
        assert [f["name"] for f in mine] == ["lifecyclePizza"]
        assert mine[0]["stores"][0]["totalRevenue"] == 0

        resp = client.delete(f"/api/franchise/{franchise['id']}/store/{store.json()['id']}", headers=_auth(owner_token))
        assert resp.json() == {"message": "store deleted"}

        resp = client.delete(f"/api/franchise/{franchise['id']}", headers=_auth(admin_token))
        assert resp.status_code == 200
        assert resp.json() == {"message": "franchise deleted"}

    def test_public_listing_hides_detail(self, api_client) -> None:
        client, admin_token, _uid = api_client
        owner, _ = _register(client)
        client.post(
            "/api/franchise",
            json={"name": "publicPizza", "admins": [{"email": owner["email"]}]},
            headers=_auth(admin_token),
        )
        resp = client.get("/api/franchise", params={"name": "publicPizza"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["more"] is False
        assert "admins" not in body["franchises"][0]

        detailed = client.get("/api/franchise", params={"name": "publicPizza"}, headers=_auth(admin_token)).json()
        assert detailed["franchises"][0]["admins"][0]["email"] == owner["email"]

    def test_diner_cannot_create_franchise(self, api_client) -> None:
        client, _token, _uid = api_client
        _user, token = _register(client)
        resp = client.post("/api/franchise", json={"name": "nope", "admins": []}, headers=_auth(token))
        assert resp.status_code == 403
        assert resp.json() == {"message": "unable to create a franchise"}

    def test_unknown_franchise_admin(self, api_client) -> None:
        client, token, _uid = api_client
        resp = client.post(
            "/api/franchise",
            json={"name": "ghostPizza", "admins": [{"email": "ghost@jwt.com"}]},
            headers=_auth(token),
        )
        assert resp.status_code == 404
        assert resp.json() == {"message": "unknown user for franchise admin ghost@jwt.com provided"}

    def test_diner_cannot_create_store(self, api_client) -> None:
        client, admin_token, _uid = api_client
        fid = client.post("/api/franchise", json={"name": "guardedPizza"}, headers=_auth(admin_token)).json()["id"]
        _user, token = _register(client)
        resp = client.post(f"/api/franchise/{fid}/store", json={"name": "Sneaky"}, headers=_auth(token))
        assert resp.status_code == 403
        assert resp.json() == {"message": "unable to create a store"}

    def test_other_users_franchises_forbidden(self, api_client) -> None:
        client, _token, uid = api_client
        _user, token = _register(client)
        assert client.get(f"/api/franchise/{uid}", headers=_auth(token)).status_code == 403


class TestServiceEndpoints:
    def test_welcome(self, api_client) -> None:
        client, _token, _uid = api_client
        body = client.get("/").json()
        assert body["message"] == "welcome to JWT Pizza"
        assert "version" in body

    def test_docs(self, api_client) -> None:
        client, _token, _uid = api_client
        body = client.get("/api/docs").json()
        assert {"method": "PUT", "path": "/api/auth", "requiresAuth": False, "description": "Login existing user"} in body[
            "endpoints"
        ]
        assert set(body["config"]) == {"factory", "db"}

    def test_unknown_endpoint(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.get("/api/nothing/here")
        assert resp.status_code == 404
        assert resp.json() == {"message": "unknown endpoint"}


class _LoopRecordingSink:
    """Sink that notes, for every push, whether it ran on the event loop thread."""

    def __init__(self) -> None:
        self.on_loop: list[bool] = []

    def push(self, *args, **kwargs) -> None:
        try:
            asyncio.get_running_loop()
            self.on_loop.append(True)
        except RuntimeError:
            self.on_loop.append(False)


class TestTelemetryDelivery:
    def test_request_telemetry_runs_off_the_event_loop(self, api_client, monkeypatch) -> None:
        client, _token, _uid = api_client
        telemetry = client.app.state.telemetry
        logs, metrics = _LoopRecordingSink(), _LoopRecordingSink()
        monkeypatch.setattr(telemetry, "log_sink", logs)
        monkeypatch.setattr(telemetry, "metric_sink", metrics)

        assert client.get("/api/order/menu").status_code == 200

        assert logs.on_loop and metrics.on_loop
        assert not any(logs.on_loop + metrics.on_loop)

    def test_exception_telemetry_runs_off_the_event_loop(self, api_client, factory, monkeypatch) -> None:
        client, admin_token, _uid = api_client
        telemetry = client.app.state.telemetry
        logs = _LoopRecordingSink()
        monkeypatch.setattr(telemetry, "log_sink", logs)

        fid = client.post("/api/franchise", json={"name": "telemetryPizza"}, headers=_auth(admin_token)).json()["id"]
        sid = client.post(f"/api/franchise/{fid}/store", json={"name": "Logan"}, headers=_auth(admin_token)).json()["id"]
        menu = client.get("/api/order/menu").json()
        if not menu:
            menu = client.put(
                "/api/order/menu", json={"title": "Plain", "price": 0.001}, headers=_auth(admin_token)
            ).json()
        item = menu[0]
        factory.order.side_effect = FactoryError()
        _user, token = _register(client)
        logs.on_loop.clear()

        resp = client.post(
            "/api/order",
            json={
                "franchiseId": fid,
                "storeId": sid,
                "items": [{"menuId": item["id"], "description": item["title"], "price": item["price"]}],
            },
            headers=_auth(token),
        )
        assert resp.status_code == 500
        assert logs.on_loop
        assert not any(logs.on_loop)
