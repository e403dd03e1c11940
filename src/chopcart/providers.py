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

"""Payment provider collaborator and the Hubtel HTTP client.

`HubtelPaymentProvider` talks to the Hubtel merchant API with httpx:
mobile money collections, hosted card checkout invoices and transaction
status lookups. Rejections come back as `PaymentInitiationError`; network
failures and server errors come back as `ProviderError`, which the polling
loop treats as "still pending".
"""

import abc
import base64
import logging
import re
from decimal import Decimal
from typing import Any
from typing import Dict
from typing import Optional

import httpx
import pydantic

from . import fees
from .config import DEFAULT_HUBTEL_BASE_URL
from .config import Settings
from .enums import PaymentMethod
from .enums import ProviderStatus
from .exceptions import PaymentInitiationError
from .exceptions import ProviderError
from .models import PaymentInitiation
from .models import PaymentStatusReport

logger = logging.getLogger(__name__)

GHANA_PHONE_RE = re.compile(r"^(\+233|0)[0-9]{9}$")

_MOMO_ACCEPTED_CODES = ("0000", "0001")
_SUCCESS_STATUSES = ("success", "successful", "completed")
_FAILED_STATUSES = ("failed", "declined", "cancelled", "expired")

_INITIATION_ERRORS = {
    401: ("AUTH_FAILED", "Authentication failed. Please contact support."),
    402: ("INSUFFICIENT_FUNDS", "Insufficient funds in your account."),
    403: ("NOT_AUTHORIZED", "Payment not authorized. Please try again."),
    408: ("PROVIDER_TIMEOUT", "Payment timed out. Please try again."),
    429: ("RATE_LIMITED", "Too many requests. Please wait and try again."),
}


def validate_phone_number(phone: str) -> bool:
  """Whether `phone` is a Ghana number in +233XXXXXXXXX or 0XXXXXXXXX form."""
  return bool(GHANA_PHONE_RE.match(phone or ""))


def format_phone_number(phone: str) -> str:
  """Normalizes a Ghana number to the 233XXXXXXXXX form Hubtel expects."""
  digits = re.sub(r"\D", "", phone)
  if digits.startswith("0") and len(digits) == 10:
    return f"233{digits[1:]}"
  if len(digits) == 9:
    return f"233{digits}"
  return digits


def map_transaction_status(raw: Optional[str]) -> ProviderStatus:
  status = str(raw or "").lower()
  if status in _SUCCESS_STATUSES:
    return ProviderStatus.SUCCESSFUL
  if status in _FAILED_STATUSES:
    return ProviderStatus.FAILED
  return ProviderStatus.PENDING


class PaymentProvider(abc.ABC):
  """A payment gateway able to collect money and report on it."""

  @abc.abstractmethod
  async def initiate_payment(
      self,
      amount: Decimal,
      method: PaymentMethod,
      contact: Optional[str],
      reference: str,
      description: str = "",
  ) -> PaymentInitiation:
    """Starts a collection.

    Raises:
      PaymentInitiationError: The provider rejected the request.
      ProviderError: The provider could not be reached.
    """

  @abc.abstractmethod
  async def check_payment_status(
      self, transaction_id: str
  ) -> PaymentStatusReport:
    """Reports the current status of a transaction.

    Raises:
      ProviderError: The status could not be retrieved.
    """

  async def close(self) -> None:
    """Releases any held connections."""


class HubtelPaymentProvider(PaymentProvider):
  """Hubtel merchant account API client."""

  def __init__(
      self,
      client_id: str,
      client_secret: str,
      base_url: str = DEFAULT_HUBTEL_BASE_URL,
      callback_url: str = "",
      return_url: str = "chopcart://payment/success",
      cancel_url: str = "chopcart://payment/cancel",
      settings: Optional[Settings] = None,
      client: Optional[httpx.AsyncClient] = None,
  ):
    self.client_id = client_id
    self.base_url = base_url.rstrip("/")
    self.callback_url = callback_url
    self.return_url = return_url
    self.cancel_url = cancel_url
    self.settings = settings or Settings()
    credentials = f"{client_id}:{client_secret}".encode("utf-8")
    self._auth = "Basic " + base64.b64encode(credentials).decode("ascii")
    self._owns_client = client is None
    self._client = client or httpx.AsyncClient(timeout=30.0)

  async def close(self) -> None:
    if self._owns_client:
      await self._client.aclose()

  def _headers(self) -> Dict[str, str]:
    return {"Authorization": self._auth, "Content-Type": "application/json"}

  def _validate_amount(self, amount: Decimal) -> None:
    if not (
        self.settings.min_payment_amount
        <= amount
        <= self.settings.max_payment_amount
    ):
      raise PaymentInitiationError(
          "Invalid payment amount.", code="INVALID_AMOUNT"
      )

  async def _post(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    try:
      response = await self._client.post(
          url, json=payload, headers=self._headers()
      )
    except httpx.HTTPError as e:
      logger.warning("Hubtel request to %s failed: %s", url, e)
      raise ProviderError(
          "Network connection failed. Please check your internet connection."
      ) from e

    if response.status_code >= 500:
      raise ProviderError("Payment service is temporarily unavailable.")
    body = _json_body(response)
    if response.status_code >= 400:
      raise _initiation_error(response.status_code, body)
    return body

  async def initiate_payment(
      self,
      amount: Decimal,
      method: PaymentMethod,
      contact: Optional[str],
      reference: str,
      description: str = "",
  ) -> PaymentInitiation:
    self._validate_amount(amount)
    description = description or f"ChopCart Order #{reference}"
    if method == PaymentMethod.MOMO:
      return await self._initiate_momo(amount, contact, reference, description)
    if method == PaymentMethod.CARD:
      return await self._initiate_card(amount, reference, description)
    raise PaymentInitiationError(
        f"Hubtel does not collect '{method.value}' payments.",
        code="UNSUPPORTED_METHOD",
    )

  async def _initiate_momo(
      self,
      amount: Decimal,
      contact: Optional[str],
      reference: str,
      description: str,
  ) -> PaymentInitiation:
    if not validate_phone_number(contact or ""):
      raise PaymentInitiationError(
          "Invalid phone number format.", code="INVALID_PHONE"
      )
    payload = {
        "CustomerMsisdn": format_phone_number(contact),
        "CustomerEmail": f"order-{reference}@chopcart.com",
        "Channel": "mtn-gh",
        "Amount": str(fees.round_money(amount)),
        "PrimaryCallbackUrl": self.callback_url,
        "Description": description,
        "ClientReference": reference,
        "FeesOnCustomer": True,
    }
    logger.info("Initiating MoMo payment for %s (%s)", reference, amount)
    body = await self._post(
        f"{self.base_url}/merchantaccount/merchants/{self.client_id}"
        "/receive/mobilemoney",
        payload,
    )
    if body.get("ResponseCode") not in _MOMO_ACCEPTED_CODES:
      raise PaymentInitiationError(
          body.get("Message") or "Transaction failed. Please try again."
      )
    data = body.get("Data")
    if not isinstance(data, dict) or not data.get("TransactionId"):
      raise ProviderError("Provider response carried no transaction id.")
    return PaymentInitiation(
        transaction_id=data["TransactionId"],
        reference=data.get("ClientReference", reference),
        message="Payment initiated. Please complete on your phone.",
    )

  async def _initiate_card(
      self, amount: Decimal, reference: str, description: str
  ) -> PaymentInitiation:
    payload = {
        "CustomerEmail": f"order-{reference}@chopcart.com",
        "Amount": str(fees.round_money(amount)),
        "CallbackUrl": self.callback_url,
        "ReturnUrl": self.return_url,
        "CancelUrl": self.cancel_url,
        "Description": description,
        "ClientReference": reference,
        "FeesOnCustomer": True,
    }
    logger.info("Creating card checkout for %s (%s)", reference, amount)
    body = await self._post(
        f"{self.base_url}/merchantaccount/onlinecheckout/invoice/create",
        payload,
    )
    if body.get("ResponseCode") != "0000":
      raise PaymentInitiationError(
          body.get("Message") or "Transaction failed. Please try again."
      )
    data = body.get("Data")
    if not isinstance(data, dict) or not data.get("TransactionId"):
      raise ProviderError("Provider response carried no transaction id.")
    return PaymentInitiation(
        transaction_id=data["TransactionId"],
        reference=data.get("ClientReference", reference),
        checkout_url=data.get("CheckoutUrl"),
        message="Card payment checkout created.",
    )

  async def check_payment_status(
      self, transaction_id: str
  ) -> PaymentStatusReport:
    url = (
        f"{self.base_url}/merchantaccount/merchants/{self.client_id}"
        f"/transactions/{transaction_id}"
    )
    try:
      response = await self._client.get(
          url, headers={"Authorization": self._auth}, timeout=15.0
      )
    except httpx.HTTPError as e:
      raise ProviderError(f"Status check failed: {e}") from e
    if response.status_code >= 400:
      raise ProviderError(
          f"Status check returned HTTP {response.status_code}"
      )

    body = _json_body(response)
    data = body.get("Data")
    if body.get("ResponseCode") != "0000" or not isinstance(data, dict):
      raise ProviderError(
          body.get("Message") or "Failed to retrieve payment status"
      )
    try:
      status = map_transaction_status(data.get("TransactionStatus"))
      reason = None
      if status == ProviderStatus.FAILED:
        reason = data.get("Description") or body.get("Message")
      return PaymentStatusReport(
          status=status,
          transaction_id=data.get("TransactionId", transaction_id),
          client_reference=data.get("ClientReference"),
          amount=data.get("Amount"),
          reason=reason,
      )
    except pydantic.ValidationError as e:
      raise ProviderError(f"Unreadable payment status: {e}") from e


def _json_body(response: httpx.Response) -> Dict[str, Any]:
  try:
    body = response.json(parse_float=Decimal)
  except ValueError:
    return {}
  return body if isinstance(body, dict) else {}


def _initiation_error(
    status_code: int, body: Dict[str, Any]
) -> PaymentInitiationError:
  message = body.get("Message") or ""
  if status_code in _INITIATION_ERRORS:
    code, default = _INITIATION_ERRORS[status_code]
    return PaymentInitiationError(default, code=code)
  lowered = message.lower()
  if "phone" in lowered or "msisdn" in lowered:
    return PaymentInitiationError(
        "Invalid phone number format.", code="INVALID_PHONE"
    )
  if "amount" in lowered:
    return PaymentInitiationError(
        "Invalid payment amount.", code="INVALID_AMOUNT"
    )
  return PaymentInitiationError(
      message or "Transaction failed. Please try again."
  )
