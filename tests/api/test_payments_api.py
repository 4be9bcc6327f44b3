"""
HTTP tests for the user-facing payment endpoints.

The acting user is injected through get_current_user_id (user 2 unless a
test switches it).
"""
import httpx
import pytest
from fastapi.testclient import TestClient

from app.api import create_app
from app.api.payments import get_current_user_id
from app.services.gateways.registry import get_registry


class ActingUser:
    def __init__(self, user_id):
        self.user_id = user_id

    def __call__(self):
        return self.user_id


@pytest.fixture
def acting_user():
    return ActingUser(2)


def _make_client(registry, acting_user):
    api = create_app(with_lifespan=False)
    api.dependency_overrides[get_registry] = lambda: registry
    api.dependency_overrides[get_current_user_id] = acting_user
    return TestClient(api)


@pytest.fixture
def client(fake_db, registry, acting_user):
    with _make_client(registry, acting_user) as test_client:
        yield test_client


@pytest.fixture
def wallet_only_client(fake_db, wallet_only_registry, acting_user):
    with _make_client(wallet_only_registry, acting_user) as test_client:
        yield test_client


@pytest.fixture
def seller(fake_db):
    fake_db.add_user(1, price=500)
    fake_db.add_user(2)
    return fake_db.users[1]


class TestAuthentication:

    def test_user_header_required(self, fake_db, registry):
        api = create_app(with_lifespan=False)
        api.dependency_overrides[get_registry] = lambda: registry
        with TestClient(api) as test_client:
            assert test_client.get("/payments/methods").status_code == 401
            response = test_client.get("/payments/methods", headers={"X-User-Id": "2"})
        assert response.status_code == 200
        assert response.json() == {"methods": []}


class TestPurchaseEndpoint:

    def test_subscription_with_bundle(self, client, fake_db, seller, acting_user):
        acting_user.user_id = 1
        bundles = client.post("/payments/bundles", json={"months": 3, "discount": 20}).json()["bundles"]
        acting_user.user_id = 2

        response = client.post(
            "/payments",
            json={"gateway": "wallet", "type": "subscription_new", "sub_id": 1, "bundle_id": bundles[0]["id"]},
        )

        assert response.status_code == 200
        payment = next(iter(fake_db.payments.values()))
        assert response.json() == {"redirect": f"https://wallet.test/subscribe/{payment['id']}"}
        assert payment["amount"] == 400
        assert payment["to_id"] == 1
        assert payment["info"] == {"sub_id": 1, "bundle_id": bundles[0]["id"]}

    def test_post_purchase(self, client, fake_db):
        fake_db.add_post(10, user_id=1, price=250)

        response = client.post("/payments", json={"gateway": "wallet", "type": "post", "post_id": 10})

        assert response.status_code == 200
        assert next(iter(fake_db.payments.values()))["amount"] == 250

    def test_self_purchase_is_403(self, client, fake_db, seller, acting_user):
        acting_user.user_id = 1

        response = client.post("/payments", json={"gateway": "wallet", "type": "subscription_new", "sub_id": 1})

        assert response.status_code == 403
        assert fake_db.payments == {}

    def test_missing_target_is_404(self, client, fake_db):
        response = client.post("/payments", json={"gateway": "wallet", "type": "post", "post_id": 404})

        assert response.status_code == 404
        assert fake_db.payments == {}

    def test_unknown_gateway_is_404(self, client, fake_db, seller):
        response = client.post("/payments", json={"gateway": "paypal", "type": "subscription_new", "sub_id": 1})

        assert response.status_code == 404
        assert response.json()["errors"] == {"_": ["gateway-not-found"]}
        assert fake_db.payments == {}

    def test_unknown_type_is_422(self, client, seller):
        response = client.post("/payments", json={"gateway": "wallet", "type": "tip", "sub_id": 1})

        assert response.status_code == 422
        assert response.json()["errors"] == {"_": ["invalid-input"]}

    def test_dispatch_transport_failure_is_503(self, client, fake_db, wallet_driver):
        fake_db.add_post(10, user_id=1, price=250)
        wallet_driver.fail_with = httpx.ConnectError("connection refused")

        response = client.post("/payments", json={"gateway": "wallet", "type": "post", "post_id": 10})

        assert response.status_code == 503
        assert next(iter(fake_db.payments.values()))["status"] == "pending"


class TestPriceEndpoint:

    def test_sets_price_in_minor_units(self, client, fake_db, seller):
        response = client.put("/payments/price", json={"price": 4.99})

        assert response.status_code == 200
        assert response.json()["price"] == 499
        assert fake_db.users[2]["price"] == 499

    def test_above_cap_is_422(self, client, fake_db, seller):
        response = client.put("/payments/price", json={"price": 10_000})

        assert response.status_code == 422
        assert fake_db.users[2]["price"] == 0


class TestBundleEndpoints:

    def test_upsert_then_update(self, client, fake_db, seller, acting_user):
        acting_user.user_id = 1

        first = client.post("/payments/bundles", json={"months": 6, "discount": 10})
        second = client.post("/payments/bundles", json={"months": 6, "discount": 30})

        assert first.status_code == 200
        assert second.status_code == 200
        bundles = second.json()["bundles"]
        assert len(bundles) == 1
        assert bundles[0]["discount"] == 30
        assert bundles[0]["price"] == 350

    def test_out_of_range_is_422(self, client, fake_db, seller, acting_user):
        acting_user.user_id = 1

        response = client.post("/payments/bundles", json={"months": 13, "discount": 10})

        assert response.status_code == 422
        assert fake_db.bundles == {}

    def test_delete_own(self, client, fake_db, seller, acting_user):
        acting_user.user_id = 1
        bundle_id = client.post("/payments/bundles", json={"months": 3, "discount": 20}).json()["bundles"][0]["id"]

        response = client.delete(f"/payments/bundles/{bundle_id}")

        assert response.status_code == 200
        assert response.json() == {"bundles": []}

    def test_delete_foreign_is_403(self, client, fake_db, seller, acting_user):
        acting_user.user_id = 1
        bundle_id = client.post("/payments/bundles", json={"months": 3, "discount": 20}).json()["bundles"][0]["id"]
        acting_user.user_id = 2

        response = client.delete(f"/payments/bundles/{bundle_id}")

        assert response.status_code == 403
        assert bundle_id in fake_db.bundles

    def test_delete_missing_is_404(self, client, seller):
        assert client.delete("/payments/bundles/999").status_code == 404


class TestMethodEndpoints:

    def test_store_first_card_is_main(self, client, fake_db, seller):
        response = client.post("/payments/methods", json={"token": "tok_visa", "title": "Visa"})

        assert response.status_code == 200
        method = response.json()
        assert method["main"] is True
        assert method["title"] == "Visa"
        assert method["info"] == {"token": "tok_visa", "last4": "4242"}

    def test_store_without_card_driver_is_500(self, wallet_only_client, fake_db, seller):
        response = wallet_only_client.post("/payments/methods", json={"token": "tok_visa"})

        assert response.status_code == 500
        assert response.json()["errors"] == {"_": ["cc-driver-not-set"]}
        assert fake_db.payment_methods == {}

    def test_store_declined_is_422(self, client, fake_db, seller):
        response = client.post("/payments/methods", json={"token": "declined"})

        assert response.status_code == 422
        assert fake_db.payment_methods == {}

    def test_index(self, client, fake_db):
        m1 = fake_db.add_method(2, main=True)
        fake_db.add_method(3, main=True)

        response = client.get("/payments/methods")

        assert response.status_code == 200
        assert [m["id"] for m in response.json()["methods"]] == [m1["id"]]

    def test_set_main(self, client, fake_db):
        fake_db.add_method(2, main=True)
        m2 = fake_db.add_method(2)

        response = client.put(f"/payments/methods/{m2['id']}/main")

        assert response.status_code == 200
        assert [m["id"] for m in response.json()["methods"] if m["main"]] == [m2["id"]]

    def test_set_main_foreign_is_403(self, client, fake_db):
        other = fake_db.add_method(3, main=True)

        assert client.put(f"/payments/methods/{other['id']}/main").status_code == 403

    def test_destroy_main_promotes_next(self, client, fake_db):
        m1 = fake_db.add_method(2, main=True)
        m2 = fake_db.add_method(2)

        response = client.delete(f"/payments/methods/{m1['id']}")

        assert response.status_code == 200
        methods = response.json()["methods"]
        assert [m["id"] for m in methods] == [m2["id"]]
        assert methods[0]["main"] is True

    def test_destroy_missing_is_404(self, client, fake_db):
        assert client.delete("/payments/methods/999").status_code == 404
