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

"""Order status lifecycle.

    pending -> accepted -> shopping -> delivering -> completed
       |          |
       +----------+-----> cancelled

Cancellation is only possible before shopping starts, since by then the
runner has already spent money on the order. `completed` and `cancelled` are
terminal. Anything else is an `IllegalTransition`; statuses are never
coerced.
"""

import logging
from typing import Any
from typing import Dict
from typing import FrozenSet
from typing import Optional
from typing import Union

from .backend import OrderBackend
from .enums import OrderStatus
from .exceptions import IllegalTransition
from .exceptions import ValidationError
from .models import Order
from .models import utcnow

logger = logging.getLogger(__name__)

TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset(
        {OrderStatus.ACCEPTED, OrderStatus.CANCELLED}
    ),
    OrderStatus.ACCEPTED: frozenset(
        {OrderStatus.SHOPPING, OrderStatus.CANCELLED}
    ),
    OrderStatus.SHOPPING: frozenset({OrderStatus.DELIVERING}),
    OrderStatus.DELIVERING: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

_TIMESTAMP_FIELDS = {
    OrderStatus.ACCEPTED: "accepted_at",
    OrderStatus.COMPLETED: "completed_at",
    OrderStatus.CANCELLED: "cancelled_at",
}

# Fields an actor may set alongside a status change.
_EXTRA_FIELDS = frozenset({"runner_id", "cancellation_reason"})


def _as_status(value: Union[OrderStatus, str]) -> OrderStatus:
  try:
    return OrderStatus(value)
  except ValueError as e:
    raise ValidationError(
        f"Unknown order status: {value}", code="INVALID_STATUS"
    ) from e


class OrderStatusMachine:
  """The legal order states and the moves between them."""

  def __init__(self, transitions: Optional[Dict] = None):
    self.transitions = transitions or TRANSITIONS

  def allowed_transitions(
      self, from_status: Union[OrderStatus, str]
  ) -> FrozenSet[OrderStatus]:
    return self.transitions.get(_as_status(from_status), frozenset())

  def can_transition(
      self,
      from_status: Union[OrderStatus, str],
      to_status: Union[OrderStatus, str],
  ) -> bool:
    return _as_status(to_status) in self.allowed_transitions(from_status)

  def is_terminal(self, status: Union[OrderStatus, str]) -> bool:
    return not self.allowed_transitions(status)

  def validate(
      self,
      from_status: Union[OrderStatus, str],
      to_status: Union[OrderStatus, str],
  ) -> None:
    """Raises `IllegalTransition` unless from -> to is a legal move."""
    source = _as_status(from_status)
    target = _as_status(to_status)
    if target not in self.allowed_transitions(source):
      raise IllegalTransition(source.value, target.value)

  def transition_fields(self, to_status: OrderStatus) -> Dict[str, Any]:
    """Timestamp fields recorded when entering `to_status`."""
    field = _TIMESTAMP_FIELDS.get(to_status)
    return {field: utcnow()} if field else {}

  def apply(
      self, order: Order, to_status: Union[OrderStatus, str]
  ) -> Order:
    """Returns a copy of `order` moved to `to_status`."""
    target = _as_status(to_status)
    self.validate(order.status, target)
    return order.model_copy(
        update={"status": target, **self.transition_fields(target)}
    )


class OrderStatusService:
  """Applies status changes requested by runners and admins."""

  def __init__(
      self,
      backend: OrderBackend,
      machine: Optional[OrderStatusMachine] = None,
  ):
    self._backend = backend
    self.machine = machine or OrderStatusMachine()

  async def update_status(
      self,
      order_id: str,
      from_status: Union[OrderStatus, str],
      to_status: Union[OrderStatus, str],
      **extra: Any,
  ) -> Order:
    """Moves an order from `from_status` to `to_status`.

    Args:
      order_id: The order to update.
      from_status: The status the caller believes the order is in.
      to_status: The requested status.
      **extra: `runner_id` or `cancellation_reason` to record as well.

    Returns:
      The updated order.

    Raises:
      IllegalTransition: If the move is not allowed, or the order is no
        longer in `from_status`.
      ValidationError: On unknown statuses or fields.
      ResourceNotFoundError: If the order does not exist.
    """
    source = _as_status(from_status)
    target = _as_status(to_status)
    unknown = set(extra) - _EXTRA_FIELDS
    if unknown:
      raise ValidationError(
          f"Unsupported fields: {', '.join(sorted(unknown))}",
          code="INVALID_FIELDS",
      )

    try:
      self.machine.validate(source, target)
    except IllegalTransition as e:
      logger.error("Rejected status change for order %s: %s", order_id, e)
      raise

    fields = self.machine.transition_fields(target)
    fields.update({k: v for k, v in extra.items() if v is not None})
    try:
      order = await self._backend.update_order_status(
          order_id, target, fields, expected_status=source
      )
    except IllegalTransition as e:
      logger.error(
          "Refusing %s -> %s for order %s: %s",
          source.value,
          target.value,
          order_id,
          e,
      )
      raise
    logger.info(
        "Order %s moved %s -> %s", order_id, source.value, target.value
    )
    return order

  async def cancel_order(
      self, order_id: str, reason: Optional[str] = None
  ) -> Order:
    """Cancels an order from whatever status it is currently in."""
    current = await self._backend.get_order(order_id)
    return await self.update_status(
        order_id,
        current.status,
        OrderStatus.CANCELLED,
        cancellation_reason=reason,
    )
