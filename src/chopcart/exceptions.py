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

"""Custom exceptions for the ChopCart order engine."""

from typing import Any
from typing import Dict
from typing import Optional


class ChopCartError(Exception):
  """Base class for all ChopCart exceptions."""

  def __init__(
      self, message: str, code: str = "INTERNAL_ERROR", status_code: int = 500
  ):
    self.message = message
    self.code = code
    self.status_code = status_code
    super().__init__(self.message)


class ValidationError(ChopCartError):
  """Raised when cart or order input is invalid and user-correctable."""

  def __init__(
      self,
      message: str,
      code: str = "VALIDATION_ERROR",
      fields: Optional[Dict[str, str]] = None,
  ):
    super().__init__(message, code=code, status_code=400)
    self.fields = fields or {}


class PersistenceError(ChopCartError):
  """Raised when the local cart storage cannot be written."""

  def __init__(self, message: str):
    super().__init__(message, code="PERSISTENCE_FAILED", status_code=500)


class ResourceNotFoundError(ChopCartError):
  """Raised when a requested order is not found."""

  def __init__(self, message: str):
    super().__init__(message, code="RESOURCE_NOT_FOUND", status_code=404)


class BackendError(ChopCartError):
  """Raised when a call to the order backend fails."""

  def __init__(self, message: str):
    super().__init__(message, code="BACKEND_ERROR", status_code=502)


class OrderCreationPartialFailure(ChopCartError):
  """Raised when the order header exists but its line items did not attach.

  The created order is carried along so the caller can retry attaching the
  items instead of creating a duplicate order.
  """

  def __init__(self, message: str, order: Any):
    super().__init__(
        message, code="ORDER_CREATION_PARTIAL", status_code=502
    )
    self.order = order


class IllegalTransition(ChopCartError):
  """Raised when an order status change is not allowed by the lifecycle."""

  def __init__(self, from_status: str, to_status: str, message: str = ""):
    super().__init__(
        message or f"Cannot move order from '{from_status}' to '{to_status}'",
        code="ILLEGAL_TRANSITION",
        status_code=409,
    )
    self.from_status = from_status
    self.to_status = to_status


class PaymentInitiationError(ChopCartError):
  """Raised when the provider rejects a payment request."""

  def __init__(self, message: str, code: str = "PAYMENT_INITIATION_FAILED"):
    super().__init__(message, code=code, status_code=402)


class PaymentTimeout(ChopCartError):
  """Raised when polling ran out of attempts without a final status."""

  def __init__(self, message: str):
    super().__init__(message, code="PAYMENT_TIMEOUT", status_code=408)


class PaymentInProgressError(ChopCartError):
  """Raised when a payment is started for an order that already has one."""

  def __init__(self, message: str):
    super().__init__(message, code="PAYMENT_IN_PROGRESS", status_code=409)


class ProviderError(ChopCartError):
  """Raised on transient provider failures such as network errors."""

  def __init__(self, message: str):
    super().__init__(message, code="PROVIDER_UNAVAILABLE", status_code=503)


class PaymentMismatchError(ChopCartError):
  """Raised when a reported payment does not belong to the order or is short."""

  def __init__(self, message: str):
    super().__init__(message, code="PAYMENT_MISMATCH", status_code=409)
