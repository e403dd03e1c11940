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

"""Turns a cart into an order snapshot."""

import logging
from typing import Dict
from typing import Optional
from typing import Union

from . import fees
from .config import Settings
from .enums import OrderStatus
from .enums import PaymentMethod
from .enums import PaymentStatus
from .exceptions import ValidationError
from .models import Cart
from .models import Order
from .models import OrderBuildResult

logger = logging.getLogger(__name__)


def validate_cart(cart: Cart, settings: Settings) -> Optional[ValidationError]:
  """Returns the reason `cart` cannot be checked out, or None."""
  if not cart.items:
    return ValidationError("Your cart is empty.", code="EMPTY_CART")

  fields: Dict[str, str] = {}
  if not cart.delivery_address.strip():
    fields["delivery_address"] = "Please enter a delivery address."
  for line in cart.items:
    if line.unit_price <= 0:
      fields[f"items.{line.id}"] = f"'{line.name}' needs a price or budget."
  if fields:
    return ValidationError(
        next(iter(fields.values())), code="INVALID_CART", fields=fields
    )

  totals = fees.cart_totals(cart.items, settings)
  if totals.total < settings.min_order_amount:
    return ValidationError(
        f"Minimum order amount is {settings.currency}"
        f" {settings.min_order_amount:.2f}.",
        code="BELOW_MINIMUM",
    )
  return None


def build_order(
    cart: Cart,
    payment_method: Union[PaymentMethod, str],
    settings: Optional[Settings] = None,
) -> OrderBuildResult:
  """Validates `cart` and freezes it into a pending order.

  The cart is not modified. Line items are deep copies, and the money fields
  include the surcharge of `payment_method`. The order has no id or order
  number until the backend creates it.

  Args:
    cart: The cart to check out.
    payment_method: How the student will pay.
    settings: Fee and limit configuration.

  Returns:
    An `OrderBuildResult` holding either the order or a `ValidationError`.
  """
  settings = settings or Settings()
  try:
    method = PaymentMethod(payment_method)
  except ValueError:
    return OrderBuildResult(
        error=ValidationError(
            f"Unsupported payment method: {payment_method}",
            code="INVALID_PAYMENT_METHOD",
        )
    )

  error = validate_cart(cart, settings)
  if error is not None:
    logger.info("Cart not ready for checkout: %s", error.message)
    return OrderBuildResult(error=error)

  totals = fees.compute_totals(
      cart.items,
      settings.delivery_fee,
      settings.service_fee_rate,
      method,
      settings,
  )
  order = Order(
      items=tuple(line.model_copy(deep=True) for line in cart.items),
      subtotal=totals.subtotal,
      delivery_fee=totals.delivery_fee,
      service_fee=totals.service_fee,
      payment_surcharge=totals.method_surcharge,
      total=totals.total,
      delivery_address=cart.delivery_address.strip(),
      special_instructions=cart.special_instructions.strip(),
      payment_method=method,
      status=OrderStatus.PENDING,
      payment_status=PaymentStatus.PENDING,
  )
  return OrderBuildResult(order=order)
