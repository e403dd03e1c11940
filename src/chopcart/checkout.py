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

"""Order placement: build, create the header, attach items, clear the cart.

The backend creates an order in two calls. If the header is created but the
items fail to attach, the result carries an `OrderCreationPartialFailure`
with the created order so the caller can retry attaching instead of placing
a duplicate order. Once both calls succeed the ordered lines leave the cart;
lines added while the order was being placed stay.
"""

import asyncio
import logging
from typing import Optional
from typing import Union

from pydantic import BaseModel
from pydantic import ConfigDict

from .backend import OrderBackend
from .cart import CartStore
from .enums import PaymentMethod
from .exceptions import ChopCartError
from .exceptions import OrderCreationPartialFailure
from .exceptions import ValidationError
from .models import Order
from .orders import build_order

logger = logging.getLogger(__name__)


class PlacementResult(BaseModel):
  """Outcome of placing an order."""

  model_config = ConfigDict(arbitrary_types_allowed=True)

  order: Optional[Order] = None
  error: Optional[ChopCartError] = None

  @property
  def ok(self) -> bool:
    return self.error is None and self.order is not None

  @property
  def partial(self) -> bool:
    return isinstance(self.error, OrderCreationPartialFailure)


class OrderPlacementService:
  """Places orders from one session's cart."""

  def __init__(
      self,
      cart: CartStore,
      backend: OrderBackend,
      student_id: Optional[str] = None,
  ):
    self._cart = cart
    self._backend = backend
    self.student_id = student_id
    self._lock = asyncio.Lock()

  async def place_order(
      self, payment_method: Union[PaymentMethod, str]
  ) -> PlacementResult:
    """Checks out the current cart with `payment_method`."""
    if self._lock.locked():
      return PlacementResult(
          error=ValidationError(
              "Your order is already being placed.", code="ORDER_IN_PROGRESS"
          )
      )
    async with self._lock:
      built = build_order(self._cart.cart, payment_method, self._cart.settings)
      if not built.ok:
        return PlacementResult(error=built.error)

      draft = built.order
      if self.student_id:
        draft = draft.model_copy(update={"student_id": self.student_id})
      try:
        created = await self._backend.create_order(draft)
      except ChopCartError as e:
        logger.error("Order creation failed: %s", e.message)
        return PlacementResult(error=e)
      return await self._attach_items(created)

  async def retry_attach_items(self, order: Order) -> PlacementResult:
    """Retries attaching items to an order whose header already exists."""
    async with self._lock:
      return await self._attach_items(order)

  async def _attach_items(self, order: Order) -> PlacementResult:
    try:
      await self._backend.add_order_line_items(order.id, order.items)
    except ChopCartError as e:
      logger.error(
          "Order %s created but its items were not saved: %s",
          order.order_number,
          e.message,
      )
      return PlacementResult(
          order=order,
          error=OrderCreationPartialFailure(
              "Your order was created but its items could not be saved."
              " Please retry.",
              order,
          ),
      )

    self._cart.remove_ordered_items(order.items)
    logger.info("Placed order %s", order.order_number)
    return PlacementResult(order=order)
