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

"""Order backend collaborator.

The engine only reads and writes orders through `OrderBackend`. Creating an
order takes two calls, one for the header and one for its line items, and the
two are not atomic: callers must handle a header that exists without items.
"""

import abc
import logging
from typing import Any
from typing import Dict
from typing import List
from typing import Optional
from typing import Sequence
import uuid

from sqlalchemy.exc import SQLAlchemyError

from . import db
from .enums import OrderStatus
from .exceptions import BackendError
from .exceptions import IllegalTransition
from .exceptions import ResourceNotFoundError
from .models import LineItem
from .models import Order

logger = logging.getLogger(__name__)

# Statuses in which an order is assigned to a runner and not yet finished.
ACTIVE_STATUSES = (
    OrderStatus.ACCEPTED,
    OrderStatus.SHOPPING,
    OrderStatus.DELIVERING,
)


class OrderBackend(abc.ABC):
  """Remote store of record for orders."""

  @abc.abstractmethod
  async def create_order(self, order: Order) -> Order:
    """Persists an order header and returns it with id and order number."""

  @abc.abstractmethod
  async def add_order_line_items(
      self, order_id: str, items: Sequence[LineItem]
  ) -> None:
    """Attaches line items to an existing order."""

  @abc.abstractmethod
  async def update_order_status(
      self,
      order_id: str,
      new_status: Optional[OrderStatus],
      extra_fields: Optional[Dict[str, Any]] = None,
      expected_status: Optional[OrderStatus] = None,
  ) -> Order:
    """Writes a new status and/or extra fields and returns the new order.

    A `new_status` of None leaves the status alone and only writes
    `extra_fields`, e.g. a payment status change. Only the given fields
    change; concurrent updates to other fields are kept.

    Raises:
      IllegalTransition: If `expected_status` is set and the order is no
        longer in it. Nothing is written.
      ResourceNotFoundError: If no such order exists.
    """

  @abc.abstractmethod
  async def get_order(self, order_id: str) -> Order:
    """Fetches an order with its line items.

    Raises:
      ResourceNotFoundError: If no such order exists.
    """

  @abc.abstractmethod
  async def list_student_orders(self, student_id: str) -> List[Order]:
    """A student's orders, newest first."""

  @abc.abstractmethod
  async def list_available_orders(self) -> List[Order]:
    """Pending orders no runner has taken yet, oldest first."""

  @abc.abstractmethod
  async def list_runner_orders(
      self, runner_id: str, active_only: bool = False
  ) -> List[Order]:
    """A runner's orders, newest first.

    With `active_only`, only orders the runner still has to finish.
    """


class SqlOrderBackend(OrderBackend):
  """`OrderBackend` on the local SQLite database."""

  def __init__(self, manager: Optional[db.DatabaseManager] = None):
    self._manager = manager or db.manager

  async def create_order(self, order: Order) -> Order:
    order_id = order.id or str(uuid.uuid4())
    header = order.model_copy(update={"id": order_id}).header()
    try:
      async with self._manager.session_factory() as session:
        order_number = await db.insert_order(session, order_id, header)
        await session.commit()
    except SQLAlchemyError as e:
      logger.error("Failed to create order: %s", e)
      raise BackendError(f"Failed to create order: {e}") from e

    logger.info("Created order %s (%s)", order_number, order_id)
    return order.model_copy(
        update={"id": order_id, "order_number": order_number}
    )

  async def add_order_line_items(
      self, order_id: str, items: Sequence[LineItem]
  ) -> None:
    payload = [item.model_dump(mode="json") for item in items]
    try:
      async with self._manager.session_factory() as session:
        if await db.get_order(session, order_id) is None:
          raise ResourceNotFoundError(f"Order {order_id} not found")
        await db.add_order_line_items(session, order_id, payload)
        await session.commit()
    except SQLAlchemyError as e:
      logger.error("Failed to attach items to order %s: %s", order_id, e)
      raise BackendError(f"Failed to attach line items: {e}") from e

  async def update_order_status(
      self,
      order_id: str,
      new_status: Optional[OrderStatus],
      extra_fields: Optional[Dict[str, Any]] = None,
      expected_status: Optional[OrderStatus] = None,
  ) -> Order:
    expected = (
        OrderStatus(expected_status).value if expected_status else None
    )
    try:
      async with self._manager.session_factory() as session:
        if not await db.lock_order(session, order_id, expected):
          current = await db.get_order_status(session, order_id)
          if current is None:
            raise ResourceNotFoundError(f"Order {order_id} not found")
          raise IllegalTransition(
              expected,
              OrderStatus(new_status or current).value,
              message=f"Order {order_id} is '{current}', not '{expected}'",
          )
        data = await db.get_order(session, order_id)
        updates = dict(extra_fields or {})
        if new_status is not None:
          updates["status"] = new_status
        # Validate before writing so a bad field never reaches the table.
        header = Order.model_validate({**data, **updates}).header()
        await db.save_order(session, order_id, header)
        items = await db.get_order_line_items(session, order_id)
        await session.commit()
    except SQLAlchemyError as e:
      logger.error("Failed to update order %s: %s", order_id, e)
      raise BackendError(f"Failed to update order: {e}") from e
    return Order.model_validate({**header, "items": items})

  async def get_order(self, order_id: str) -> Order:
    try:
      async with self._manager.session_factory() as session:
        data = await db.get_order(session, order_id)
        if data is None:
          raise ResourceNotFoundError(f"Order {order_id} not found")
        items = await db.get_order_line_items(session, order_id)
    except SQLAlchemyError as e:
      raise BackendError(f"Failed to load order: {e}") from e
    return Order.model_validate({**data, "items": items})

  async def list_student_orders(self, student_id: str) -> List[Order]:
    return await self._list(student_id=student_id)

  async def list_available_orders(self) -> List[Order]:
    return await self._list(
        statuses=[OrderStatus.PENDING.value],
        unassigned=True,
        newest_first=False,
    )

  async def list_runner_orders(
      self, runner_id: str, active_only: bool = False
  ) -> List[Order]:
    statuses = None
    if active_only:
      statuses = [status.value for status in ACTIVE_STATUSES]
    return await self._list(runner_id=runner_id, statuses=statuses)

  async def _list(self, **filters: Any) -> List[Order]:
    try:
      async with self._manager.session_factory() as session:
        headers = await db.list_orders(session, **filters)
        items = await db.get_line_items_by_order(
            session, [header["id"] for header in headers]
        )
    except SQLAlchemyError as e:
      raise BackendError(f"Failed to list orders: {e}") from e
    return [
        Order.model_validate({**header, "items": items[header["id"]]})
        for header in headers
    ]
