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

"""Tests for the Hubtel payment provider client."""

import asyncio
import base64
from decimal import Decimal
import json

from absl.testing import absltest
import httpx

from chopcart.enums import PaymentMethod
from chopcart.enums import ProviderStatus
from chopcart.exceptions import PaymentInitiationError
from chopcart.exceptions import ProviderError
from chopcart.providers import HubtelPaymentProvider
from chopcart.providers import format_phone_number
from chopcart.providers import map_transaction_status
from chopcart.providers import validate_phone_number
from chopcart.test_utils import make_settings

BASE_URL = "https://hubtel.test/v1"


class PhoneNumberTest(absltest.TestCase):

  def test_validate(self):
    self.assertTrue(validate_phone_number("0241234567"))
    self.assertTrue(validate_phone_number("+233241234567"))
    self.assertFalse(validate_phone_number("241234567"))
    self.assertFalse(validate_phone_number("02412345"))
    self.assertFalse(validate_phone_number(""))

  def test_format(self):
    self.assertEqual(format_phone_number("0241234567"), "233241234567")
    self.assertEqual(format_phone_number("+233241234567"), "233241234567")
    self.assertEqual(format_phone_number("241234567"), "233241234567")

  def test_status_mapping(self):
    self.assertEqual(
        map_transaction_status("Success"), ProviderStatus.SUCCESSFUL
    )
    self.assertEqual(
        map_transaction_status("completed"), ProviderStatus.SUCCESSFUL
    )
    self.assertEqual(map_transaction_status("Declined"), ProviderStatus.FAILED)
    self.assertEqual(map_transaction_status("expired"), ProviderStatus.FAILED)
    self.assertEqual(
        map_transaction_status("Processing"), ProviderStatus.PENDING
    )
    self.assertEqual(map_transaction_status(None), ProviderStatus.PENDING)


class HubtelPaymentProviderTest(absltest.TestCase):

  def setUp(self):
    super().setUp()
    self.requests = []

  def _run(self, handler, call):
    """Runs `call(provider)` against a mocked Hubtel API."""

    def recording_handler(request):
      self.requests.append(request)
      return handler(request)

    async def scenario():
      client = httpx.AsyncClient(
          transport=httpx.MockTransport(recording_handler)
      )
      provider = HubtelPaymentProvider(
          "client-1",
          "secret",
          base_url=BASE_URL,
          callback_url="https://api.chopcart.test/webhooks/payments",
          settings=make_settings(),
          client=client,
      )
      try:
        return await call(provider)
      finally:
        await client.aclose()

    return asyncio.run(scenario())

  def test_momo_initiation(self):
    def handler(request):
      del request  # Unused.
      return httpx.Response(
          200,
          json={
              "ResponseCode": "0001",
              "Data": {"TransactionId": "tx-77", "ClientReference": "order-1"},
              "Message": "Transaction pending",
          },
      )

    initiation = self._run(
        handler,
        lambda p: p.initiate_payment(
            Decimal("27.18"), PaymentMethod.MOMO, "0241234567", "order-1"
        ),
    )
    self.assertEqual(initiation.transaction_id, "tx-77")
    self.assertIsNone(initiation.checkout_url)

    request = self.requests[0]
    self.assertEqual(request.method, "POST")
    self.assertEqual(
        request.url.path,
        "/v1/merchantaccount/merchants/client-1/receive/mobilemoney",
    )
    expected_auth = base64.b64encode(b"client-1:secret").decode("ascii")
    self.assertEqual(request.headers["Authorization"], f"Basic {expected_auth}")
    body = json.loads(request.content)
    self.assertEqual(body["CustomerMsisdn"], "233241234567")
    self.assertEqual(body["Amount"], "27.18")
    self.assertEqual(body["ClientReference"], "order-1")
    self.assertEqual(
        body["PrimaryCallbackUrl"],
        "https://api.chopcart.test/webhooks/payments",
    )

  def test_card_initiation_returns_checkout_url(self):
    def handler(request):
      del request  # Unused.
      return httpx.Response(
          200,
          json={
              "ResponseCode": "0000",
              "Data": {
                  "CheckoutUrl": "https://pay.hubtel.test/c/1",
                  "TransactionId": "tx-5",
                  "ClientReference": "order-2",
              },
          },
      )

    initiation = self._run(
        handler,
        lambda p: p.initiate_payment(
            Decimal("40.00"), PaymentMethod.CARD, None, "order-2"
        ),
    )
    self.assertEqual(initiation.checkout_url, "https://pay.hubtel.test/c/1")
    self.assertEqual(initiation.transaction_id, "tx-5")
    self.assertEqual(
        self.requests[0].url.path,
        "/v1/merchantaccount/onlinecheckout/invoice/create",
    )
    self.assertEqual(json.loads(self.requests[0].content)["Amount"], "40.00")

  def test_local_validation_skips_request(self):
    def handler(request):
      raise AssertionError(f"unexpected request {request.url}")

    cases = [
        (Decimal("20.00"), PaymentMethod.MOMO, "12345", "INVALID_PHONE"),
        (Decimal("20000"), PaymentMethod.MOMO, "0241234567", "INVALID_AMOUNT"),
        (Decimal("0.50"), PaymentMethod.CARD, None, "INVALID_AMOUNT"),
        (Decimal("20.00"), PaymentMethod.CASH, None, "UNSUPPORTED_METHOD"),
    ]
    for amount, method, contact, code in cases:
      with self.assertRaises(PaymentInitiationError) as ctx:
        self._run(
            handler,
            lambda p, a=amount, m=method, c=contact: p.initiate_payment(
                a, m, c, "order-3"
            ),
        )
      self.assertEqual(ctx.exception.code, code)
    self.assertEmpty(self.requests)

  def test_rejections(self):
    cases = [
        (
            httpx.Response(200, json={"ResponseCode": "2001", "Message": "No"}),
            "PAYMENT_INITIATION_FAILED",
        ),
        (httpx.Response(402, json={}), "INSUFFICIENT_FUNDS"),
        (
            httpx.Response(400, json={"Message": "Invalid msisdn"}),
            "INVALID_PHONE",
        ),
        (httpx.Response(401, text="denied"), "AUTH_FAILED"),
    ]
    for response, code in cases:
      with self.assertRaises(PaymentInitiationError) as ctx:
        self._run(
            lambda request, r=response: r,
            lambda p: p.initiate_payment(
                Decimal("20.00"), PaymentMethod.MOMO, "0241234567", "order-4"
            ),
        )
      self.assertEqual(ctx.exception.code, code)

  def test_unavailable_provider(self):
    def network_down(request):
      raise httpx.ConnectError("connection refused", request=request)

    for handler in (network_down, lambda request: httpx.Response(503)):
      with self.assertRaises(ProviderError):
        self._run(
            handler,
            lambda p: p.initiate_payment(
                Decimal("20.00"), PaymentMethod.CARD, None, "order-5"
            ),
        )

  def test_status_check(self):
    def handler(request):
      self.assertEqual(request.method, "GET")
      self.assertEqual(
          request.url.path,
          "/v1/merchantaccount/merchants/client-1/transactions/tx-1",
      )
      return httpx.Response(
          200,
          json={
              "ResponseCode": "0000",
              "Data": {
                  "TransactionId": "tx-1",
                  "TransactionStatus": "Successful",
                  "ClientReference": "order-1",
                  "Amount": 45.1,
              },
          },
      )

    report = self._run(handler, lambda p: p.check_payment_status("tx-1"))
    self.assertEqual(report.status, ProviderStatus.SUCCESSFUL)
    self.assertEqual(report.client_reference, "order-1")
    self.assertEqual(report.amount, Decimal("45.10"))
    self.assertIsNone(report.reason)

  def test_status_check_failure_reason(self):
    def handler(request):
      del request  # Unused.
      return httpx.Response(
          200,
          json={
              "ResponseCode": "0000",
              "Data": {
                  "TransactionId": "tx-2",
                  "TransactionStatus": "Declined",
                  "Description": "Insufficient balance",
              },
          },
      )

    report = self._run(handler, lambda p: p.check_payment_status("tx-2"))
    self.assertEqual(report.status, ProviderStatus.FAILED)
    self.assertEqual(report.reason, "Insufficient balance")

  def test_status_check_errors_are_transient(self):
    handlers = [
        lambda request: httpx.Response(500),
        lambda request: httpx.Response(200, json={"ResponseCode": "4000"}),
        lambda request: httpx.Response(200, text="<html>"),
        lambda request: httpx.Response(
            200, json={"ResponseCode": "0000", "Data": ["unexpected"]}
        ),
        lambda request: httpx.Response(
            200,
            json={
                "ResponseCode": "0000",
                "Data": {"TransactionStatus": "Success", "Amount": "lots"},
            },
        ),
    ]
    for handler in handlers:
      with self.assertRaises(ProviderError):
        self._run(handler, lambda p: p.check_payment_status("tx-3"))


if __name__ == "__main__":
  absltest.main()
