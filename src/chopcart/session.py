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

"""Per-student session context.

A `StudentSession` owns the cart and the in-flight payments of one student
and wires them to the shared collaborators. Use it as an async context
manager, or call `open()` and `close()` explicitly:

    async with StudentSession(storage, backend, provider) as session:
      session.cart.add_item(item)
      placed = await session.place_order(PaymentMethod.MOMO)
      outcome = await session.pay(placed.order, contact="0241234567")
"""

import logging
from typing import Optional
from typing import Union

from .backend import OrderBackend
from .cart import CartStore
from .checkout import OrderPlacementService
from .checkout import PlacementResult
from .config import Settings
from .enums import PaymentMethod
from .models import Order
from .models import PaymentOutcome
from .payments import PaymentOrchestrator
from .payments import PaymentRecorder
from .payments import PaymentSession
from .providers import PaymentProvider
from .status import OrderStatusService
from .storage import KeyValueStorage

logger = logging.getLogger(__name__)


class StudentSession:
  """Cart, checkout and payments for one student."""

  def __init__(
      self,
      storage: KeyValueStorage,
      backend: OrderBackend,
      provider: PaymentProvider,
      settings: Optional[Settings] = None,
      student_id: Optional[str] = None,
      recorder: Optional[PaymentRecorder] = None,
  ):
    self.settings = settings or Settings()
    self.student_id = student_id
    storage_key = self.settings.cart_storage_key
    if student_id:
      storage_key = f"{storage_key}:{student_id}"
    self._backend = backend
    self.cart = CartStore(storage, self.settings, storage_key=storage_key)
    self.checkout = OrderPlacementService(
        self.cart, backend, student_id=student_id
    )
    self.payments = PaymentOrchestrator(
        provider, backend, self.settings, recorder=recorder
    )
    self.status = OrderStatusService(backend)
    self._open = False

  async def open(self) -> "StudentSession":
    """Restores the saved cart."""
    await self.cart.hydrate()
    self._open = True
    logger.info("Session opened for %s", self.student_id or "anonymous")
    return self

  async def close(self) -> None:
    """Stops payment polling and flushes the cart."""
    if not self._open:
      return
    self._open = False
    await self.payments.close()
    result = await self.cart.flush()
    if not result.success:
      logger.warning("Cart not saved on close: %s", result.message)

  async def __aenter__(self) -> "StudentSession":
    return await self.open()

  async def __aexit__(self, exc_type, exc, tb) -> None:
    await self.close()

  async def place_order(
      self, payment_method: Union[PaymentMethod, str]
  ) -> PlacementResult:
    return await self.checkout.place_order(payment_method)

  async def pay(
      self,
      order: Order,
      method: Union[PaymentMethod, str, None] = None,
      contact: Optional[str] = None,
  ) -> PaymentOutcome:
    return await self.payments.pay(order, method, contact)

  async def start_payment(
      self,
      order: Order,
      method: Union[PaymentMethod, str, None] = None,
      contact: Optional[str] = None,
  ) -> PaymentSession:
    return await self.payments.start_payment(order, method, contact)

  async def refresh_order(self, order_id: str) -> Order:
    """Re-reads an order, e.g. after a payment timed out."""
    return await self._backend.get_order(order_id)

  async def cancel_order(
      self, order_id: str, reason: Optional[str] = None
  ) -> Order:
    self.payments.cancel(order_id)
    return await self.status.cancel_order(order_id, reason)
