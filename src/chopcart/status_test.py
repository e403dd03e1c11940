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

"""Tests for the order status machine."""

import asyncio

from absl.testing import absltest

from chopcart.enums import OrderStatus
from chopcart.enums import PaymentMethod
from chopcart.exceptions import IllegalTransition
from chopcart.exceptions import ValidationError
from chopcart.models import Cart
from chopcart.models import LineItem
from chopcart.orders import build_order
from chopcart.status import OrderStatusMachine
from chopcart.status import OrderStatusService
from chopcart.test_utils import InMemoryOrderBackend
from chopcart.test_utils import catalog_item
from chopcart.test_utils import make_settings

LEGAL = {
    ("pending", "accepted"),
    ("pending", "cancelled"),
    ("accepted", "shopping"),
    ("accepted", "cancelled"),
    ("shopping", "delivering"),
    ("delivering", "completed"),
}


def _draft():
  cart = Cart(items=[LineItem(source=catalog_item())], delivery_address="Hall")
  return build_order(cart, PaymentMethod.CASH, make_settings()).order


class OrderStatusMachineTest(absltest.TestCase):

  def setUp(self):
    super().setUp()
    self.machine = OrderStatusMachine()

  def test_transition_table(self):
    for source in OrderStatus:
      for target in OrderStatus:
        legal = (source.value, target.value) in LEGAL
        self.assertEqual(
            self.machine.can_transition(source, target),
            legal,
            msg=f"{source.value} -> {target.value}",
        )
        if legal:
          self.machine.validate(source, target)
        else:
          with self.assertRaises(IllegalTransition):
            self.machine.validate(source, target)

  def test_terminal_states(self):
    self.assertTrue(self.machine.is_terminal("completed"))
    self.assertTrue(self.machine.is_terminal("cancelled"))
    self.assertFalse(self.machine.is_terminal("delivering"))

  def test_unknown_status(self):
    with self.assertRaises(ValidationError):
      self.machine.validate("pending", "teleported")

  def test_apply_sets_timestamps(self):
    order = _draft()
    accepted = self.machine.apply(order, OrderStatus.ACCEPTED)
    self.assertEqual(accepted.status, OrderStatus.ACCEPTED)
    self.assertIsNotNone(accepted.accepted_at)
    self.assertEqual(order.status, OrderStatus.PENDING)
    self.assertIsNone(order.accepted_at)

    cancelled = self.machine.apply(accepted, "cancelled")
    self.assertIsNotNone(cancelled.cancelled_at)
    with self.assertRaises(IllegalTransition):
      self.machine.apply(cancelled, "accepted")


class OrderStatusServiceTest(absltest.TestCase):

  def setUp(self):
    super().setUp()
    self.backend = InMemoryOrderBackend()
    self.service = OrderStatusService(self.backend)
    self.order = asyncio.run(self.backend.create_order(_draft()))

  def test_skipping_accepted_is_rejected(self):
    with self.assertLogs(level="ERROR"):
      with self.assertRaises(IllegalTransition):
        asyncio.run(
            self.service.update_status(self.order.id, "pending", "shopping")
        )
    self.assertEmpty(self.backend.update_calls)

  def test_cancel_after_shopping_is_rejected(self):
    async def scenario():
      await self.service.update_status(self.order.id, "pending", "accepted")
      await self.service.update_status(self.order.id, "accepted", "shopping")
      with self.assertRaises(IllegalTransition):
        await self.service.update_status(
            self.order.id, "shopping", "cancelled"
        )
      return await self.backend.get_order(self.order.id)

    order = asyncio.run(scenario())
    self.assertEqual(order.status, OrderStatus.SHOPPING)

  def test_full_lifecycle(self):
    async def scenario():
      steps = [
          ("pending", "accepted"),
          ("accepted", "shopping"),
          ("shopping", "delivering"),
          ("delivering", "completed"),
      ]
      order = None
      for source, target in steps:
        order = await self.service.update_status(
            self.order.id, source, target, runner_id="runner-1"
        )
      return order

    order = asyncio.run(scenario())
    self.assertEqual(order.status, OrderStatus.COMPLETED)
    self.assertEqual(order.runner_id, "runner-1")
    self.assertIsNotNone(order.accepted_at)
    self.assertIsNotNone(order.completed_at)

  def test_stale_from_status_is_rejected(self):
    async def scenario():
      await self.service.update_status(self.order.id, "pending", "accepted")
      await self.service.update_status(self.order.id, "pending", "cancelled")

    with self.assertLogs(level="ERROR"):
      with self.assertRaises(IllegalTransition):
        asyncio.run(scenario())

  def test_concurrent_requests_from_one_status_apply_once(self):
    async def scenario():
      return await asyncio.gather(
          self.service.update_status(self.order.id, "pending", "cancelled"),
          self.service.update_status(
              self.order.id, "pending", "accepted", runner_id="runner-1"
          ),
          return_exceptions=True,
      )

    results = asyncio.run(scenario())
    self.assertLen(
        [r for r in results if isinstance(r, IllegalTransition)], 1
    )
    self.assertLen(self.backend.update_calls, 1)

  def test_cancel_order_records_reason(self):
    order = asyncio.run(
        self.service.cancel_order(self.order.id, reason="Changed my mind")
    )
    self.assertEqual(order.status, OrderStatus.CANCELLED)
    self.assertEqual(order.cancellation_reason, "Changed my mind")
    self.assertIsNotNone(order.cancelled_at)

  def test_unknown_fields_are_rejected(self):
    with self.assertRaises(ValidationError):
      asyncio.run(
          self.service.update_status(
              self.order.id, "pending", "accepted", total="0.00"
          )
      )


if __name__ == "__main__":
  absltest.main()
