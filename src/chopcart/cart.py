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

"""The student's shopping cart.

`CartStore` owns one session's cart. Mutations are synchronous, apply to the
in-memory cart immediately and recompute the money fields through the fee
calculator. Persistence to `KeyValueStorage` happens in a background task
that always writes the latest in-memory state, so a burst of mutations turns
into as few writes as possible. A failed write never rolls the cart back; it
is recorded in `persistence_error` and retried with the next mutation.
"""

import asyncio
import decimal
from decimal import Decimal
import logging
from typing import Optional
from typing import Sequence
from typing import Tuple
from typing import Union

import pydantic

from . import fees
from .config import Settings
from .exceptions import PersistenceError
from .models import Cart
from .models import CatalogItem
from .models import CustomItem
from .models import LineItem
from .models import OperationResult
from .models import ZERO
from .storage import KeyValueStorage

logger = logging.getLogger(__name__)

_PERSISTED_FIELDS = {"items", "delivery_address", "special_instructions"}


class CartStore:
  """In-memory cart with write-behind persistence."""

  def __init__(
      self,
      storage: KeyValueStorage,
      settings: Optional[Settings] = None,
      storage_key: Optional[str] = None,
  ):
    self.settings = settings or Settings()
    self._storage = storage
    self._key = storage_key or self.settings.cart_storage_key
    self._cart = Cart()
    self._hydrated = False
    self._mutated = False
    self._dirty = False
    self._writer: Optional[asyncio.Task] = None
    self.persistence_error: Optional[PersistenceError] = None

  # --- Read-only views ---

  @property
  def cart(self) -> Cart:
    """A copy of the current cart."""
    return self._cart.model_copy(deep=True)

  @property
  def items(self) -> Tuple[LineItem, ...]:
    return tuple(self._cart.items)

  @property
  def delivery_address(self) -> str:
    return self._cart.delivery_address

  @property
  def special_instructions(self) -> str:
    return self._cart.special_instructions

  @property
  def subtotal(self) -> Decimal:
    return self._cart.subtotal

  @property
  def delivery_fee(self) -> Decimal:
    return self._cart.delivery_fee

  @property
  def service_fee(self) -> Decimal:
    return self._cart.service_fee

  @property
  def total(self) -> Decimal:
    return self._cart.total

  @property
  def item_count(self) -> int:
    """Sum of quantities across all lines."""
    return sum(line.quantity for line in self._cart.items)

  @property
  def is_empty(self) -> bool:
    return not self._cart.items

  @property
  def can_checkout(self) -> bool:
    return (
        not self.is_empty
        and self._cart.total >= self.settings.min_order_amount
        and bool(self._cart.delivery_address.strip())
    )

  def get_line_item(self, item_id: str) -> Optional[LineItem]:
    """Finds a line by its own id or by the catalog id it refers to."""
    for line in self._cart.items:
      if line.id == item_id or line.catalog_id == item_id:
        return line
    return None

  def get_item_quantity(self, item_id: str) -> int:
    line = self.get_line_item(item_id)
    return line.quantity if line else 0

  def is_item_in_cart(self, item_id: str) -> bool:
    return self.get_line_item(item_id) is not None

  # --- Mutations ---

  def add_item(
      self,
      item: Union[CatalogItem, CustomItem],
      quantity: int = 1,
      notes: str = "",
  ) -> OperationResult:
    """Adds `quantity` of `item`, merging into an equivalent line if any."""
    if not isinstance(quantity, int) or quantity <= 0:
      return OperationResult.fail(
          "INVALID_QUANTITY", "Quantity must be a positive whole number."
      )

    for line in self._cart.items:
      if line.matches(item):
        line.quantity += quantity
        if notes:
          line.notes = notes
        self._changed()
        return OperationResult.ok(f"Updated {line.name} in your cart.")

    if len(self._cart.items) >= self.settings.max_cart_items:
      return OperationResult.fail(
          "CART_FULL",
          f"You can have at most {self.settings.max_cart_items} items in"
          " your cart.",
      )

    self._cart.items.append(
        LineItem(source=item.model_copy(), quantity=quantity, notes=notes)
    )
    self._changed()
    return OperationResult.ok(f"Added {item.name} to your cart.")

  def add_custom_item(
      self, name: str, budget, notes: str = ""
  ) -> OperationResult:
    """Adds a free-form request priced by the student's budget."""
    name = (name or "").strip()
    if not name:
      return OperationResult.fail(
          "INVALID_ITEM", "Please describe the item you need."
      )
    try:
      amount = Decimal(str(budget))
    except decimal.InvalidOperation:
      amount = ZERO
    if not amount.is_finite() or amount <= 0:
      return OperationResult.fail(
          "INVALID_BUDGET", "Please enter a budget greater than zero."
      )
    return self.add_item(CustomItem(name=name, budget=amount), 1, notes)

  def remove_item(self, line_id: str) -> OperationResult:
    """Removes a line by line id or catalog id. Absent ids are a no-op."""
    remaining = [
        line
        for line in self._cart.items
        if line.id != line_id and line.catalog_id != line_id
    ]
    if len(remaining) != len(self._cart.items):
      self._cart.items = remaining
      self._changed()
    return OperationResult.ok()

  def update_quantity(self, line_id: str, quantity: int) -> OperationResult:
    if not isinstance(quantity, int):
      return OperationResult.fail(
          "INVALID_QUANTITY", "Quantity must be a whole number."
      )
    if quantity <= 0:
      return self.remove_item(line_id)
    line = self.get_line_item(line_id)
    if line is None:
      return OperationResult.fail(
          "ITEM_NOT_FOUND", "That item is no longer in your cart."
      )
    line.quantity = quantity
    self._changed()
    return OperationResult.ok()

  def clear_cart(self) -> OperationResult:
    """Empties the cart and drops the persisted copy."""
    self._cart = Cart()
    self._changed()
    return OperationResult.ok()

  def remove_ordered_items(
      self, ordered: Sequence[LineItem]
  ) -> OperationResult:
    """Takes the lines of a placed order out of the cart.

    Lines are matched by id and only the ordered quantity is removed, so
    anything the student added while the order was being placed stays in the
    cart. The cart is cleared entirely once nothing is left in it.
    """
    taken = {line.id: line.quantity for line in ordered}
    remaining = []
    for line in self._cart.items:
      left = line.quantity - taken.get(line.id, 0)
      if left <= 0:
        continue
      if left != line.quantity:
        line = line.model_copy(update={"quantity": left})
      remaining.append(line)
    if not remaining:
      return self.clear_cart()
    self._cart.items = remaining
    self._changed()
    return OperationResult.ok()

  def update_delivery_address(self, address: str) -> OperationResult:
    self._cart.delivery_address = (address or "").strip()
    self._changed()
    return OperationResult.ok()

  def update_special_instructions(self, instructions: str) -> OperationResult:
    self._cart.special_instructions = (instructions or "").strip()
    self._changed()
    return OperationResult.ok()

  # --- Lifecycle ---

  async def hydrate(self) -> None:
    """Restores the persisted cart. Only the first call does anything."""
    if self._hydrated:
      return
    self._hydrated = True
    try:
      raw = await self._storage.get(self._key)
    except PersistenceError as e:
      logger.warning("Could not read saved cart: %s", e)
      self.persistence_error = e
      return

    if self._mutated:
      # Edits made before hydration win over the stored copy.
      logger.info("Cart changed before hydration, keeping in-memory state")
      return
    if not raw:
      return
    try:
      saved = Cart.model_validate_json(raw)
    except pydantic.ValidationError as e:
      logger.warning("Discarding unreadable saved cart: %s", e)
      self._schedule_persist()
      return

    self._cart = Cart(
        items=saved.items[: self.settings.max_cart_items],
        delivery_address=saved.delivery_address,
        special_instructions=saved.special_instructions,
    )
    self._recompute()
    logger.info("Restored cart with %d lines", len(self._cart.items))

  async def flush(self) -> OperationResult:
    """Waits for pending writes and reports whether the last one succeeded."""
    if self._writer is not None and not self._writer.done():
      await self._writer
    if self._dirty:
      await self._write_pending()
    if self.persistence_error is not None:
      return OperationResult.fail(
          self.persistence_error.code, self.persistence_error.message
      )
    return OperationResult.ok()

  async def close(self) -> OperationResult:
    return await self.flush()

  # --- Internals ---

  def _changed(self) -> None:
    self._mutated = True
    self._recompute()
    self._schedule_persist()

  def _recompute(self) -> None:
    totals = fees.cart_totals(self._cart.items, self.settings)
    self._cart.subtotal = totals.subtotal
    self._cart.delivery_fee = totals.delivery_fee
    self._cart.service_fee = totals.service_fee
    self._cart.total = totals.total

  def _is_blank(self) -> bool:
    return not (
        self._cart.items
        or self._cart.delivery_address
        or self._cart.special_instructions
    )

  def _schedule_persist(self) -> None:
    self._dirty = True
    try:
      loop = asyncio.get_running_loop()
    except RuntimeError:
      # No loop: the write happens on the next flush().
      return
    if self._writer is None or self._writer.done():
      self._writer = loop.create_task(self._write_pending())

  async def _write_pending(self) -> None:
    while self._dirty:
      self._dirty = False
      try:
        if self._is_blank():
          await self._storage.remove(self._key)
        else:
          await self._storage.set(
              self._key,
              self._cart.model_dump_json(include=_PERSISTED_FIELDS),
          )
      except Exception as e:  # pylint: disable=broad-exception-caught
        logger.error("Failed to persist cart: %s", e)
        self.persistence_error = (
            e if isinstance(e, PersistenceError) else PersistenceError(str(e))
        )
        return
      self.persistence_error = None
