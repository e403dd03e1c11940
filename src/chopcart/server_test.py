#   Copyright 2026 ChopCart Authors
#
#   Licensed under the Apache License, Version 2.0 (the "License");
#   you may not use this file except in compliance with the License.
#   You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
#   Unless required by applicable law or agreed to in writing, software
#   distributed under the License is distributed on an "AS IS" BASIS,
#   WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#   See the License for the specific language governing permissions and
#   limitations under the License.

"""Integration tests for the ChopCart HTTP service."""

import asyncio
from decimal import Decimal
import json
import os
import shutil
import tempfile

from absl.testing import absltest
from fastapi.testclient import TestClient
from sqlalchemy.pool import NullPool

from chopcart import db
from chopcart import dependencies
from chopcart.backend import SqlOrderBackend
from chopcart.enums import PaymentMethod
from chopcart.enums import ProviderStatus
from chopcart.models import Cart
from chopcart.models import LineItem
from chopcart.orders import build_order
from chopcart.payments import PaymentRecorder
from chopcart.server import app
from chopcart.test_utils import ScriptedProvider
from chopcart.test_utils import catalog_item
from chopcart.test_utils import make_settings


class ServerTest(absltest.TestCase):
  """Tests for the order, status and webhook routes."""

  def setUp(self) -> None:
    super().setUp()
    self.test_dir = tempfile.mkdtemp()
    self.manager = db.DatabaseManager()
    asyncio.run(
        self.manager.init_db(
            os.path.join(self.test_dir, "chopcart.db"), poolclass=NullPool
        )
    )
    self.recorder = PaymentRecorder(SqlOrderBackend(self.manager))
    self.webhook_secret = None

    app.dependency_overrides[dependencies.get_backend] = (
        lambda: SqlOrderBackend(self.manager)
    )
    app.dependency_overrides[dependencies.get_payment_recorder] = (
        lambda: self.recorder
    )
    app.dependency_overrides[dependencies.get_webhook_secret] = (
        lambda: self.webhook_secret
    )

    self.client = TestClient(app)
    self.order = asyncio.run(self._seed_order())

  def tearDown(self) -> None:
    app.dependency_overrides.clear()
    asyncio.run(self.manager.close())
    shutil.rmtree(self.test_dir)
    super().tearDown()

  async def _seed_order(self, student_id=None):
    cart = Cart(
        items=[LineItem(source=catalog_item(), quantity=2)],
        delivery_address="Commonwealth Hall",
    )
    draft = build_order(cart, PaymentMethod.MOMO, make_settings()).order
    draft = draft.model_copy(update={"student_id": student_id})
    backend = SqlOrderBackend(self.manager)
    order = await backend.create_order(draft)
    await backend.add_order_line_items(order.id, order.items)
    return order

  def _callback(self, status="Success", reference=None, amount="23.50"):
    return {
        "ResponseCode": "0000" if status == "Success" else "2001",
        "Data": {
            "ClientReference": reference or self.order.id,
            "TransactionId": "tx-100",
            "TransactionStatus": status,
            "Amount": amount,
        },
        "Message": "Done",
    }

  def test_health(self):
    response = self.client.get("/health")
    self.assertEqual(response.status_code, 200)
    self.assertEqual(response.json()["status"], "ok")

  def test_get_order(self):
    response = self.client.get(f"/orders/{self.order.id}")
    self.assertEqual(response.status_code, 200)
    data = response.json()
    self.assertEqual(data["order_number"], "DK000001")
    self.assertEqual(data["status"], "pending")
    self.assertEqual(data["payment_status"], "pending")
    self.assertEqual(data["total"], "23.50")
    self.assertLen(data["items"], 1)
    self.assertEqual(data["items"][0]["total_price"], "20.00")

  def test_get_unknown_order(self):
    response = self.client.get("/orders/missing")
    self.assertEqual(response.status_code, 404)
    self.assertEqual(response.json()["code"], "RESOURCE_NOT_FOUND")

  def test_status_transitions(self):
    url = f"/orders/{self.order.id}/status"
    response = self.client.post(
        url,
        json={
            "from_status": "pending",
            "to_status": "accepted",
            "runner_id": "runner-3",
        },
    )
    self.assertEqual(response.status_code, 200)
    self.assertEqual(response.json()["status"], "accepted")
    self.assertEqual(response.json()["runner_id"], "runner-3")
    self.assertIsNotNone(response.json()["accepted_at"])

    response = self.client.post(
        url, json={"from_status": "accepted", "to_status": "completed"}
    )
    self.assertEqual(response.status_code, 409)
    self.assertEqual(response.json()["code"], "ILLEGAL_TRANSITION")

    response = self.client.post(
        url, json={"from_status": "accepted", "to_status": "teleported"}
    )
    self.assertEqual(response.status_code, 422)

  def test_skipping_accepted_is_rejected(self):
    response = self.client.post(
        f"/orders/{self.order.id}/status",
        json={"from_status": "pending", "to_status": "shopping"},
    )
    self.assertEqual(response.status_code, 409)
    order = self.client.get(f"/orders/{self.order.id}").json()
    self.assertEqual(order["status"], "pending")

  def test_webhook_marks_order_paid_once(self):
    first = self.client.post("/webhooks/payments", json=self._callback())
    self.assertEqual(first.status_code, 200)
    self.assertTrue(first.json()["applied"])

    second = self.client.post("/webhooks/payments", json=self._callback())
    self.assertEqual(second.status_code, 200)
    self.assertFalse(second.json()["applied"])

    order = self.client.get(f"/orders/{self.order.id}").json()
    self.assertEqual(order["payment_status"], "paid")
    self.assertEqual(order["payment_reference"], "tx-100")

  def test_webhook_failure_leaves_order_pending(self):
    response = self.client.post(
        "/webhooks/payments", json=self._callback("Failed")
    )
    self.assertEqual(response.status_code, 200)
    self.assertEqual(response.json()["status"], "failed")
    self.assertFalse(response.json()["applied"])
    order = self.client.get(f"/orders/{self.order.id}").json()
    self.assertEqual(order["payment_status"], "pending")

  def test_webhook_unknown_order(self):
    response = self.client.post(
        "/webhooks/payments", json=self._callback(reference="missing")
    )
    self.assertEqual(response.status_code, 404)

  def test_webhook_signature(self):
    self.webhook_secret = "s3cret"
    body = json.dumps(self._callback()).encode("utf-8")

    unsigned = self.client.post(
        "/webhooks/payments",
        content=body,
        headers={"Content-Type": "application/json"},
    )
    self.assertEqual(unsigned.status_code, 401)

    forged = self.client.post(
        "/webhooks/payments",
        content=body,
        headers={
            "Content-Type": "application/json",
            dependencies.SIGNATURE_HEADER: "0" * 64,
        },
    )
    self.assertEqual(forged.status_code, 401)

    signed = self.client.post(
        "/webhooks/payments",
        content=body,
        headers={
            "Content-Type": "application/json",
            dependencies.SIGNATURE_HEADER: dependencies.compute_signature(
                "s3cret", body
            ),
        },
    )
    self.assertEqual(signed.status_code, 200)
    self.assertTrue(signed.json()["applied"])

  def test_verify_payment(self):
    provider = ScriptedProvider(
        [ProviderStatus.SUCCESSFUL],
        paid_amount=Decimal("23.50"),
        paid_reference=self.order.id,
    )
    app.dependency_overrides[dependencies.get_payment_provider] = (
        lambda: provider
    )
    response = self.client.post(
        f"/orders/{self.order.id}/payment/verify",
        json={"transaction_id": "tx-9"},
    )
    self.assertEqual(response.status_code, 200)
    self.assertEqual(response.json()["status"], "successful")
    self.assertTrue(response.json()["applied"])
    self.assertEqual(response.json()["payment_status"], "paid")

  def test_webhook_short_amount_is_refused(self):
    response = self.client.post(
        "/webhooks/payments", json=self._callback(amount="1.00")
    )
    self.assertEqual(response.status_code, 409)
    self.assertEqual(response.json()["code"], "PAYMENT_MISMATCH")
    order = self.client.get(f"/orders/{self.order.id}").json()
    self.assertEqual(order["payment_status"], "pending")
    self.assertIsNone(order["payment_reference"])

  def test_verify_payment_for_another_order_is_refused(self):
    other = asyncio.run(self._seed_order())
    provider = ScriptedProvider(
        [ProviderStatus.SUCCESSFUL],
        paid_amount=Decimal("23.50"),
        paid_reference=self.order.id,
    )
    app.dependency_overrides[dependencies.get_payment_provider] = (
        lambda: provider
    )
    response = self.client.post(
        f"/orders/{other.id}/payment/verify",
        json={"transaction_id": "tx-9"},
    )
    self.assertEqual(response.status_code, 409)
    self.assertEqual(response.json()["code"], "PAYMENT_MISMATCH")
    for order_id in (other.id, self.order.id):
      order = self.client.get(f"/orders/{order_id}").json()
      self.assertEqual(order["payment_status"], "pending")

  def test_order_listings(self):
    mine = asyncio.run(self._seed_order(student_id="student-7"))
    accepted = self.client.post(
        f"/orders/{self.order.id}/status",
        json={
            "from_status": "pending",
            "to_status": "accepted",
            "runner_id": "runner-3",
        },
    )
    self.assertEqual(accepted.status_code, 200)

    def ids(url):
      response = self.client.get(url)
      self.assertEqual(response.status_code, 200)
      return [order["id"] for order in response.json()]

    self.assertEqual(ids("/available-orders"), [mine.id])
    self.assertEqual(ids("/students/student-7/orders"), [mine.id])
    self.assertEqual(ids("/students/nobody/orders"), [])
    self.assertEqual(ids("/runners/runner-3/orders"), [self.order.id])
    self.assertEqual(
        ids("/runners/runner-3/orders?active=true"), [self.order.id]
    )
    self.assertEqual(ids("/runners/runner-9/orders"), [])

  def test_verify_payment_without_provider(self):
    response = self.client.post(
        f"/orders/{self.order.id}/payment/verify",
        json={"transaction_id": "tx-9"},
    )
    self.assertEqual(response.status_code, 503)
    self.assertEqual(response.json()["code"], "PROVIDER_UNAVAILABLE")


if __name__ == "__main__":
  absltest.main()
