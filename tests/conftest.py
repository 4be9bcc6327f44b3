"""
Pytest configuration and shared fixtures for service layer tests.

FakeDatabase implements the database.py helper surface in memory, including
the row lock taken by get_payment_for_update and the per-owner advisory lock
taken by lock_payment_methods, so invariants can be checked under concurrency.
"""
import asyncio
import itertools
from contextlib import asynccontextmanager, ExitStack
from typing import Any, Dict, List, Optional
from unittest.mock import patch

import pytest

from app.services.gateways.base import CallbackRequest, GatewayDriver
from app.services.gateways.registry import GatewayRegistry

SERVICE_MODULES = (
    "app.services.pricing.service",
    "app.services.bundles.service",
    "app.services.payments.service",
    "app.services.payment_methods.service",
)


class FakeConnection:
    def __init__(self):
        self.held: List[asyncio.Lock] = []


class FakeDatabase:
    PAYMENT_METHOD_TYPE_CARD = "card"
    DB_READY = True

    def __init__(self):
        self.users: Dict[int, Dict[str, Any]] = {}
        self.posts: Dict[int, Dict[str, Any]] = {}
        self.messages: Dict[int, Dict[str, Any]] = {}
        self.payments: Dict[int, Dict[str, Any]] = {}
        self.bundles: Dict[int, Dict[str, Any]] = {}
        self.payment_methods: Dict[int, Dict[str, Any]] = {}
        self._ids = itertools.count(1)
        self._locks: Dict[Any, asyncio.Lock] = {}
        self.transactions = 0

    # -- seeding -------------------------------------------------------------

    def add_user(self, user_id: int, price: int = 0):
        self.users[user_id] = {"id": user_id, "price": price}
        return self.users[user_id]

    def add_post(self, post_id: int, user_id: int, price: int):
        self.posts[post_id] = {"id": post_id, "user_id": user_id, "price": price}
        return self.posts[post_id]

    def add_message(self, message_id: int, user_id: int, price: int):
        self.messages[message_id] = {"id": message_id, "user_id": user_id, "price": price}
        return self.messages[message_id]

    def add_method(self, user_id: int, main: bool = False, title: Optional[str] = None):
        method_id = next(self._ids)
        self.payment_methods[method_id] = {
            "id": method_id,
            "user_id": user_id,
            "type": "card",
            "info": {"token": f"tok_{method_id}"},
            "title": title,
            "main": main,
        }
        return dict(self.payment_methods[method_id])

    def methods_of(self, user_id: int) -> List[Dict[str, Any]]:
        return [dict(m) for m in sorted(self.payment_methods.values(), key=lambda m: m["id"]) if m["user_id"] == user_id]

    # -- transactions and locks ---------------------------------------------

    def _lock(self, key) -> asyncio.Lock:
        return self._locks.setdefault(key, asyncio.Lock())

    @asynccontextmanager
    async def transaction(self):
        self.transactions += 1
        conn = FakeConnection()
        try:
            yield conn
        finally:
            for lock in reversed(conn.held):
                lock.release()

    async def _hold(self, key, conn: FakeConnection):
        lock = self._lock(key)
        await lock.acquire()
        conn.held.append(lock)

    # -- platform entities ---------------------------------------------------

    async def get_user(self, user_id, conn=None):
        user = self.users.get(user_id)
        return dict(user) if user else None

    async def get_post(self, post_id, conn=None):
        post = self.posts.get(post_id)
        return dict(post) if post else None

    async def get_message(self, message_id, conn=None):
        message = self.messages.get(message_id)
        return dict(message) if message else None

    async def update_user_price(self, user_id, price, conn=None):
        if user_id not in self.users:
            return None
        self.users[user_id]["price"] = price
        return dict(self.users[user_id])

    # -- payments ------------------------------------------------------------

    async def create_payment(self, user_id, to_id, payment_type, info, amount, gateway, conn=None):
        payment_id = next(self._ids)
        self.payments[payment_id] = {
            "id": payment_id,
            "user_id": user_id,
            "to_id": to_id,
            "type": payment_type,
            "info": dict(info),
            "amount": amount,
            "gateway": gateway,
            "status": "pending",
        }
        return dict(self.payments[payment_id])

    async def get_payment(self, payment_id, conn=None):
        payment = self.payments.get(payment_id)
        return dict(payment) if payment else None

    async def get_payment_for_update(self, payment_id, conn):
        await self._hold(("payment", payment_id), conn)
        return await self.get_payment(payment_id)

    async def complete_payment(self, payment_id, conn=None):
        payment = self.payments.get(payment_id)
        if not payment or payment["status"] != "pending":
            return False
        payment["status"] = "complete"
        return True

    # -- bundles -------------------------------------------------------------

    async def get_bundle(self, bundle_id, conn=None):
        bundle = self.bundles.get(bundle_id)
        return dict(bundle) if bundle else None

    async def get_user_bundle(self, user_id, bundle_id, conn=None):
        bundle = self.bundles.get(bundle_id)
        if not bundle or bundle["user_id"] != user_id:
            return None
        return dict(bundle)

    async def get_user_bundles(self, user_id, conn=None):
        return [dict(b) for b in sorted(self.bundles.values(), key=lambda b: b["months"]) if b["user_id"] == user_id]

    async def upsert_bundle(self, user_id, months, discount, conn=None):
        for bundle in self.bundles.values():
            if bundle["user_id"] == user_id and bundle["months"] == months:
                bundle["discount"] = discount
                return dict(bundle)
        bundle_id = next(self._ids)
        self.bundles[bundle_id] = {"id": bundle_id, "user_id": user_id, "months": months, "discount": discount}
        return dict(self.bundles[bundle_id])

    async def delete_bundle(self, bundle_id, conn=None):
        return self.bundles.pop(bundle_id, None) is not None

    # -- payment methods -----------------------------------------------------

    async def lock_payment_methods(self, user_id, conn):
        await self._hold(("payment_methods", user_id), conn)

    async def get_payment_method(self, method_id, conn=None):
        method = self.payment_methods.get(method_id)
        return dict(method) if method else None

    async def get_payment_methods(self, user_id, conn=None):
        return self.methods_of(user_id)

    async def get_main_payment_method(self, user_id, conn=None):
        for method in self.methods_of(user_id):
            if method["main"]:
                return method
        return None

    async def create_payment_method(self, user_id, method_type, info, title, main, conn=None):
        # Yield so racing creates interleave like real round-trips
        await asyncio.sleep(0)
        method_id = next(self._ids)
        self.payment_methods[method_id] = {
            "id": method_id,
            "user_id": user_id,
            "type": method_type,
            "info": dict(info),
            "title": title,
            "main": main,
        }
        return dict(self.payment_methods[method_id])

    async def set_payment_method_main(self, method_id, main, conn=None):
        await asyncio.sleep(0)
        if method_id in self.payment_methods:
            self.payment_methods[method_id]["main"] = main

    async def delete_payment_method(self, method_id, conn=None):
        return self.payment_methods.pop(method_id, None) is not None


class FakeWalletDriver(GatewayDriver):
    """Non-card driver: callback body is the payment id, signature header "ok"."""

    id = "wallet"
    name = "Wallet"

    def __init__(self):
        self.bought = []
        self.subscribed = []
        self.processed = []
        self.process_delay = 0.0
        self.fail_with: Optional[BaseException] = None

    async def buy(self, payment):
        if self.fail_with:
            raise self.fail_with
        self.bought.append(payment)
        return {"redirect": f"https://wallet.test/pay/{payment['id']}"}

    async def subscribe(self, payment, target_user, bundle=None):
        if self.fail_with:
            raise self.fail_with
        self.subscribed.append((payment, target_user, bundle))
        return {"redirect": f"https://wallet.test/subscribe/{payment['id']}"}

    async def validate_callback(self, request: CallbackRequest):
        if request.header("x-signature") != "ok":
            return None
        return int(request.body.decode())

    async def process_payment(self, payment):
        if self.process_delay:
            await asyncio.sleep(self.process_delay)
        if self.fail_with:
            raise self.fail_with
        self.processed.append(payment["id"])
        return {"transaction": f"tx-{payment['id']}"}


class FakeCardDriver(FakeWalletDriver):
    id = "stripe"
    name = "Stripe"
    is_card = True

    async def extract_card_info(self, raw_input, user):
        token = raw_input.get("token")
        if not token or token == "declined":
            return None
        return {"token": token, "last4": "4242"}


@pytest.fixture
def fake_db():
    """In-memory database patched into every service module"""
    db = FakeDatabase()
    with ExitStack() as stack:
        for module in SERVICE_MODULES:
            stack.enter_context(patch(f"{module}.database", db))
        yield db


@pytest.fixture
def wallet_driver():
    return FakeWalletDriver()


@pytest.fixture
def card_driver():
    return FakeCardDriver()


@pytest.fixture
def registry(wallet_driver, card_driver):
    return GatewayRegistry([wallet_driver, card_driver])


@pytest.fixture
def wallet_only_registry(wallet_driver):
    return GatewayRegistry([wallet_driver])


def callback(payment_id: int, signature: str = "ok") -> CallbackRequest:
    return CallbackRequest(headers={"X-Signature": signature}, body=str(payment_id).encode())


@pytest.fixture
def make_callback():
    return callback
