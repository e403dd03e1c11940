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

"""Money and fee calculation.

Every monetary figure shown in the cart, frozen onto an order, or charged by
the payment orchestrator comes from `compute_totals`. Amounts are exact
decimals; rounding to cents (half up) happens only after summation.
"""

from decimal import Decimal
from decimal import ROUND_HALF_UP
from typing import Iterable
from typing import Optional

from .config import Settings
from .enums import PaymentMethod
from .models import LineItem
from .models import Order
from .models import Totals
from .models import ZERO

CENTS = Decimal("0.01")


def round_money(value) -> Decimal:
  """Rounds a decimal amount to cents, half up."""
  return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def method_surcharge(
    base: Decimal,
    payment_method: Optional[PaymentMethod],
    settings: Settings,
) -> Decimal:
  """Provider fee passed on to the customer for a payment method.

  Args:
    base: The amount being paid before the surcharge.
    payment_method: The chosen method, or None when no method is chosen yet.
    settings: Fee configuration.

  Returns:
    The surcharge rounded to cents. Cash and "no method" cost nothing.
  """
  if payment_method is None or payment_method == PaymentMethod.CASH:
    return ZERO
  if payment_method == PaymentMethod.MOMO:
    return round_money(
        max(settings.momo_min_fee, base * settings.momo_fee_rate)
    )
  if payment_method == PaymentMethod.CARD:
    return round_money(base * settings.card_fee_rate)
  raise ValueError(f"Unknown payment method: {payment_method}")


def compute_totals(
    line_items: Iterable[LineItem],
    delivery_fee_base: Decimal,
    service_fee_rate: Decimal,
    payment_method: Optional[PaymentMethod] = None,
    settings: Optional[Settings] = None,
) -> Totals:
  """Computes subtotal, fees and grand total for a set of line items.

  Args:
    line_items: Lines to price. Each contributes quantity x unit price.
    delivery_fee_base: Flat delivery fee charged on a non-empty basket.
    service_fee_rate: Platform commission as a fraction of the subtotal.
    payment_method: Method whose surcharge to include, if any.
    settings: Source of the surcharge rates. Defaults to `Settings()`.

  Returns:
    A `Totals` whose total is exactly the sum of its parts.
  """
  settings = settings or Settings()
  items = list(line_items)
  if not items:
    return Totals()

  subtotal = round_money(
      sum((item.unit_price * item.quantity for item in items), ZERO)
  )
  service_fee = round_money(subtotal * Decimal(service_fee_rate))
  delivery_fee = round_money(delivery_fee_base)
  base = subtotal + service_fee + delivery_fee
  surcharge = method_surcharge(base, payment_method, settings)
  return Totals(
      subtotal=subtotal,
      service_fee=service_fee,
      delivery_fee=delivery_fee,
      method_surcharge=surcharge,
      total=round_money(base + surcharge),
  )


def cart_totals(line_items: Iterable[LineItem], settings: Settings) -> Totals:
  """Totals as shown in the cart, before a payment method is chosen."""
  return compute_totals(
      line_items, settings.delivery_fee, settings.service_fee_rate, None,
      settings,
  )


def charge_amount(
    order: Order, payment_method: PaymentMethod, settings: Settings
) -> Decimal:
  """Amount to charge for `order` when paid with `payment_method`.

  Starts from the order's frozen subtotal and fees, so paying with the
  method the order was built for charges exactly `order.total`.
  """
  base = order.subtotal + order.service_fee + order.delivery_fee
  return round_money(base + method_surcharge(base, payment_method, settings))
