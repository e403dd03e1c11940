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

"""Pydantic models for carts, orders and payment attempts.

Line items carry a tagged `source` that is either a catalog reference or a
free-form custom request. Prices on a line are always derived from the source
and the quantity, so a line total can never drift from its inputs.
"""

import datetime
from decimal import Decimal
from typing import Annotated
from typing import Any
from typing import List
from typing import Literal
from typing import Optional
from typing import Tuple
from typing import Union
import uuid

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import computed_field

from .enums import AttemptStatus
from .enums import OrderStatus
from .enums import PaymentMethod
from .enums import PaymentStatus
from .enums import ProviderStatus
from .exceptions import ValidationError

ZERO = Decimal("0.00")


def _new_id() -> str:
  return str(uuid.uuid4())


def utcnow() -> datetime.datetime:
  return datetime.datetime.now(datetime.timezone.utc)


class CatalogItem(BaseModel):
  """A priced item from the store catalog."""

  kind: Literal["catalog"] = "catalog"
  id: str
  name: str
  unit_price: Decimal = Field(ge=0)
  unit: str = "piece"

  @property
  def price(self) -> Decimal:
    return self.unit_price


class CustomItem(BaseModel):
  """A free-form request priced by the student's budget."""

  kind: Literal["custom"] = "custom"
  name: str
  budget: Decimal = Field(ge=0)

  @property
  def price(self) -> Decimal:
    return self.budget


ItemSource = Annotated[
    Union[CatalogItem, CustomItem], Field(discriminator="kind")
]


class LineItem(BaseModel):
  """One cart or order line."""

  id: str = Field(default_factory=_new_id)
  source: ItemSource
  quantity: int = Field(1, ge=1)
  notes: str = ""

  @computed_field
  @property
  def unit_price(self) -> Decimal:
    return self.source.price

  @computed_field
  @property
  def total_price(self) -> Decimal:
    return self.source.price * self.quantity

  @property
  def name(self) -> str:
    return self.source.name

  @property
  def catalog_id(self) -> Optional[str]:
    if isinstance(self.source, CatalogItem):
      return self.source.id
    return None

  def matches(self, source: Union[CatalogItem, CustomItem]) -> bool:
    """Whether `source` should merge into this line rather than add one."""
    if isinstance(source, CatalogItem):
      return self.catalog_id == source.id
    return (
        isinstance(self.source, CustomItem)
        and self.source.name.strip().lower() == source.name.strip().lower()
    )


class Totals(BaseModel):
  """Output of the fee calculator."""

  model_config = ConfigDict(frozen=True)

  subtotal: Decimal = ZERO
  service_fee: Decimal = ZERO
  delivery_fee: Decimal = ZERO
  method_surcharge: Decimal = ZERO
  total: Decimal = ZERO


class Cart(BaseModel):
  """The student's basket. Money fields are recomputed by the cart store."""

  items: List[LineItem] = Field(default_factory=list)
  delivery_address: str = ""
  special_instructions: str = ""
  subtotal: Decimal = ZERO
  delivery_fee: Decimal = ZERO
  service_fee: Decimal = ZERO
  total: Decimal = ZERO


class Order(BaseModel):
  """Snapshot of a cart at checkout time.

  The id and order number are assigned by the order backend. Money fields
  are fixed when the order is built and never recomputed.
  """

  model_config = ConfigDict(frozen=True)

  id: Optional[str] = None
  order_number: Optional[str] = None
  student_id: Optional[str] = None
  items: Tuple[LineItem, ...] = ()
  subtotal: Decimal
  delivery_fee: Decimal
  service_fee: Decimal
  payment_surcharge: Decimal = ZERO
  total: Decimal
  delivery_address: str
  special_instructions: str = ""
  payment_method: PaymentMethod
  status: OrderStatus = OrderStatus.PENDING
  payment_status: PaymentStatus = PaymentStatus.PENDING
  payment_reference: Optional[str] = None
  runner_id: Optional[str] = None
  cancellation_reason: Optional[str] = None
  created_at: datetime.datetime = Field(default_factory=utcnow)
  accepted_at: Optional[datetime.datetime] = None
  completed_at: Optional[datetime.datetime] = None
  cancelled_at: Optional[datetime.datetime] = None

  def header(self) -> dict[str, Any]:
    """JSON-safe representation without the line items."""
    return self.model_dump(mode="json", exclude={"items"})


class OrderBuildResult(BaseModel):
  """Either a built order or the validation error that prevented it."""

  model_config = ConfigDict(arbitrary_types_allowed=True)

  order: Optional[Order] = None
  error: Optional[ValidationError] = None

  @property
  def ok(self) -> bool:
    return self.order is not None


class OperationResult(BaseModel):
  """Result of a cart operation."""

  model_config = ConfigDict(frozen=True)

  success: bool
  code: Optional[str] = None
  message: str = ""

  @classmethod
  def ok(cls, message: str = "") -> "OperationResult":
    return cls(success=True, message=message)

  @classmethod
  def fail(cls, code: str, message: str) -> "OperationResult":
    return cls(success=False, code=code, message=message)


class PaymentInitiation(BaseModel):
  """Provider response to a payment request."""

  transaction_id: str
  reference: Optional[str] = None
  checkout_url: Optional[str] = None
  message: str = ""


class PaymentStatusReport(BaseModel):
  """Provider response to a status check."""

  status: ProviderStatus
  transaction_id: Optional[str] = None
  client_reference: Optional[str] = None
  amount: Optional[Decimal] = None
  reason: Optional[str] = None


class PaymentAttempt(BaseModel):
  """A single in-flight payment. Lives only as long as its polling loop."""

  order_id: str
  method: PaymentMethod
  amount: Decimal
  transaction_id: Optional[str] = None
  checkout_url: Optional[str] = None
  status: AttemptStatus = AttemptStatus.INITIATED
  polls: int = 0
  reason: Optional[str] = None


class PaymentOutcome(BaseModel):
  """Final result of a payment attempt as reported to the caller.

  A cash outcome is `successful` as soon as the order is marked for payment
  on delivery, but the order stays unpaid until the runner collects. Such
  outcomes set `collect_on_delivery`; use `paid` to ask whether money was
  actually received.
  """

  model_config = ConfigDict(frozen=True)

  order_id: str
  method: PaymentMethod
  status: AttemptStatus
  amount: Decimal
  transaction_id: Optional[str] = None
  reference: Optional[str] = None
  checkout_url: Optional[str] = None
  polls: int = 0
  error_code: Optional[str] = None
  message: str = ""
  collect_on_delivery: bool = False

  @property
  def succeeded(self) -> bool:
    return self.status == AttemptStatus.SUCCESSFUL

  @property
  def paid(self) -> bool:
    return self.succeeded and not self.collect_on_delivery


class StatusUpdateRequest(BaseModel):
  """Body of a runner or admin status change."""

  from_status: OrderStatus
  to_status: OrderStatus
  runner_id: Optional[str] = None
  cancellation_reason: Optional[str] = None


class HubtelCallbackData(BaseModel):
  model_config = ConfigDict(populate_by_name=True)

  client_reference: str = Field(alias="ClientReference")
  transaction_id: Optional[str] = Field(None, alias="TransactionId")
  transaction_status: str = Field("", alias="TransactionStatus")
  amount: Optional[Decimal] = Field(None, alias="Amount")


class HubtelCallback(BaseModel):
  """Payment notification posted by Hubtel to the webhook route."""

  model_config = ConfigDict(populate_by_name=True)

  response_code: str = Field(alias="ResponseCode")
  data: HubtelCallbackData = Field(alias="Data")
  message: str = Field("", alias="Message")
