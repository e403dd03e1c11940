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

"""Payment orchestration.

`PaymentOrchestrator` starts a payment for an order and, for card and mobile
money, runs a polling task that asks the provider for the final status:

    initiated -> processing -> successful | failed | timed_out

Polling waits `poll_initial_delay` seconds, then polls up to
`max_poll_attempts` times, `poll_interval` seconds apart. A transient error
while checking uses up a poll and counts as "still pending". Running out of
polls reports `timed_out` and leaves the order untouched, since the payment
may still complete on the provider's side.

Only one attempt per order may be in flight. Marking an order paid is
idempotent and serialized per order, so the polling task and the provider
webhook can both report the same success safely.
"""

import asyncio
import logging
from typing import Any
from typing import Dict
from typing import List
from typing import Optional
from typing import Union
import weakref

import httpx

from . import fees
from .backend import OrderBackend
from .config import Settings
from .enums import AttemptStatus
from .enums import PaymentMethod
from .enums import PaymentStatus
from .enums import ProviderStatus
from .exceptions import ChopCartError
from .exceptions import PaymentInProgressError
from .exceptions import PaymentInitiationError
from .exceptions import PaymentMismatchError
from .exceptions import PaymentTimeout
from .exceptions import ProviderError
from .models import Order
from .models import PaymentAttempt
from .models import PaymentOutcome
from .models import PaymentStatusReport
from .providers import PaymentProvider

logger = logging.getLogger(__name__)

CASH_REFERENCE_PREFIX = "CASH_"


def _outcome(attempt: PaymentAttempt, **kwargs) -> PaymentOutcome:
  values = {
      "order_id": attempt.order_id,
      "method": attempt.method,
      "status": attempt.status,
      "amount": attempt.amount,
      "transaction_id": attempt.transaction_id,
      "reference": attempt.transaction_id,
      "checkout_url": attempt.checkout_url,
      "polls": attempt.polls,
  }
  values.update(kwargs)
  return PaymentOutcome(**values)


class PaymentRecorder:
  """Writes confirmed payments to the order backend.

  Shared by the polling tasks and the provider webhook. Updates to one order
  are serialized, and confirming an order that is already paid does nothing.
  A provider report is only accepted for the order it was raised for and
  for at least the amount that order costs.
  """

  def __init__(
      self, backend: OrderBackend, settings: Optional[Settings] = None
  ):
    self._backend = backend
    self.settings = settings or Settings()
    # Entries disappear once no coroutine holds the lock.
    self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
        weakref.WeakValueDictionary()
    )

  def _lock(self, order_id: str) -> asyncio.Lock:
    lock = self._locks.get(order_id)
    if lock is None:
      lock = asyncio.Lock()
      self._locks[order_id] = lock
    return lock

  def check_report(
      self,
      order: Order,
      report: PaymentStatusReport,
      method: Optional[PaymentMethod] = None,
  ) -> None:
    """Raises `PaymentMismatchError` unless `report` pays for `order`."""
    if report.client_reference != order.id:
      raise PaymentMismatchError(
          f"Transaction {report.transaction_id} was raised for"
          f" {report.client_reference or 'no order'}, not order {order.id}."
      )
    expected = fees.charge_amount(
        order, method or order.payment_method, self.settings
    )
    if report.amount is None or report.amount < expected:
      raise PaymentMismatchError(
          f"Transaction {report.transaction_id} paid {report.amount},"
          f" order {order.id} costs {expected}."
      )

  async def apply_payment_success(
      self,
      order_id: str,
      reference: Optional[str] = None,
      report: Optional[PaymentStatusReport] = None,
      method: Optional[PaymentMethod] = None,
  ) -> bool:
    """Marks an order paid.

    Args:
      order_id: The order the payment is for.
      reference: Provider transaction id to record.
      report: The provider's view of the transaction. When given, it must
        name this order and cover its amount.
      method: How the student paid, if not the order's own method.

    Returns:
      True if the order was updated, False if it was already paid.

    Raises:
      PaymentMismatchError: If `report` is for another order or too little.
      ResourceNotFoundError: If the order does not exist.
    """
    async with self._lock(order_id):
      order = await self._backend.get_order(order_id)
      if report is not None:
        try:
          self.check_report(order, report, method)
        except PaymentMismatchError as e:
          logger.error("Refusing payment for order %s: %s", order_id, e)
          raise
      if order.payment_status == PaymentStatus.PAID:
        logger.info("Order %s is already paid, ignoring duplicate", order_id)
        return False
      fields: Dict[str, Any] = {
          "payment_status": PaymentStatus.PAID,
          "payment_reference": reference,
      }
      if method is not None:
        fields["payment_method"] = method
      await self._backend.update_order_status(order_id, None, fields)
      logger.info("Order %s marked paid (%s)", order_id, reference)
      return True


class PaymentSession:
  """Handle on one running payment attempt.

  `attempt` is updated in place as the payment progresses; for card payments
  `attempt.checkout_url` is available once `initiated` is set.
  """

  def __init__(self, attempt: PaymentAttempt):
    self.attempt = attempt
    self.initiated = asyncio.Event()
    self.task: Optional[asyncio.Task] = None

  @property
  def done(self) -> bool:
    return self.task is not None and self.task.done()

  def cancel(self) -> bool:
    if self.task is None or self.task.done():
      return False
    return self.task.cancel()

  async def wait(self) -> PaymentOutcome:
    """Waits for the attempt to finish and returns its outcome."""
    try:
      return await asyncio.shield(self.task)
    except asyncio.CancelledError:
      if not self.task.cancelled():
        raise
      return _outcome(
          self.attempt,
          error_code="PAYMENT_CANCELLED",
          message=(
              "Stopped checking the payment. Check your order status later."
          ),
      )


class PaymentOrchestrator:
  """Runs payments for one student session."""

  def __init__(
      self,
      provider: PaymentProvider,
      backend: OrderBackend,
      settings: Optional[Settings] = None,
      recorder: Optional[PaymentRecorder] = None,
  ):
    self._provider = provider
    self._backend = backend
    self.settings = settings or Settings()
    self.recorder = recorder or PaymentRecorder(backend, self.settings)
    self._sessions: Dict[str, PaymentSession] = {}

  def active_attempt(self, order_id: str) -> Optional[PaymentAttempt]:
    session = self._sessions.get(order_id)
    if session is None or session.done:
      return None
    return session.attempt

  async def pay(
      self,
      order: Order,
      method: Union[PaymentMethod, str, None] = None,
      contact: Optional[str] = None,
  ) -> PaymentOutcome:
    """Pays for `order` and waits for the final outcome.

    Args:
      order: A created order (it must have an id).
      method: Payment method, defaulting to the one the order was built for.
      contact: Customer phone number, required for mobile money.

    Returns:
      The `PaymentOutcome`. Provider rejections, failures and timeouts are
      reported through its `status` and `error_code`.

    Raises:
      PaymentInProgressError: If a payment for this order is already running.
    """
    session = await self.start_payment(order, method, contact)
    return await session.wait()

  async def start_payment(
      self,
      order: Order,
      method: Union[PaymentMethod, str, None] = None,
      contact: Optional[str] = None,
  ) -> PaymentSession:
    """Starts paying for `order` and returns without waiting for the result.

    Raises:
      PaymentInProgressError: If a payment for this order is already running.
      PaymentInitiationError: If the order or method cannot be paid at all.
    """
    if not order.id:
      raise PaymentInitiationError(
          "Order must be created before it can be paid.", code="ORDER_NOT_SAVED"
      )
    if self.active_attempt(order.id) is not None:
      raise PaymentInProgressError(
          f"A payment for order {order.order_number or order.id} is already"
          " in progress."
      )

    try:
      chosen = PaymentMethod(method or order.payment_method)
    except ValueError as e:
      raise PaymentInitiationError(
          f"Unsupported payment method: {method}", code="UNSUPPORTED_METHOD"
      ) from e
    if chosen not in self.settings.supported_payment_methods():
      raise PaymentInitiationError(
          f"{chosen.value} payments are not available.",
          code="UNSUPPORTED_METHOD",
      )

    attempt = PaymentAttempt(
        order_id=order.id,
        method=chosen,
        amount=fees.charge_amount(order, chosen, self.settings),
    )
    session = PaymentSession(attempt)
    session.task = asyncio.create_task(self._run(order, session, contact))
    session.task.add_done_callback(
        lambda task: self._finished(order.id, session, task)
    )
    self._sessions[order.id] = session
    logger.info(
        "Started %s payment of %s for order %s",
        chosen.value,
        attempt.amount,
        order.id,
    )
    return session

  def cancel(self, order_id: str) -> bool:
    """Stops the polling for `order_id`. Returns whether anything stopped."""
    session = self._sessions.get(order_id)
    if session is None:
      return False
    cancelled = session.cancel()
    if cancelled:
      logger.info("Cancelled payment polling for order %s", order_id)
    return cancelled

  async def close(self) -> None:
    """Cancels every running attempt and waits for them to unwind."""
    tasks: List[asyncio.Task] = []
    for session in list(self._sessions.values()):
      if session.cancel():
        tasks.append(session.task)
    if tasks:
      await asyncio.wait(tasks)

  async def apply_payment_success(
      self,
      order_id: str,
      reference: Optional[str] = None,
      report: Optional[PaymentStatusReport] = None,
      method: Optional[PaymentMethod] = None,
  ) -> bool:
    """Marks an order paid. See `PaymentRecorder.apply_payment_success`."""
    return await self.recorder.apply_payment_success(
        order_id, reference, report=report, method=method
    )

  def _finished(
      self, order_id: str, session: PaymentSession, task: asyncio.Task
  ) -> None:
    if self._sessions.get(order_id) is session:
      del self._sessions[order_id]
    session.initiated.set()
    if not task.cancelled() and task.exception() is not None:
      logger.error(
          "Payment task for order %s crashed: %s", order_id, task.exception()
      )

  async def _run(
      self,
      order: Order,
      session: PaymentSession,
      contact: Optional[str],
  ) -> PaymentOutcome:
    attempt = session.attempt
    if attempt.method == PaymentMethod.CASH:
      return await self._settle_cash(order, session)

    try:
      initiation = await self._provider.initiate_payment(
          attempt.amount,
          attempt.method,
          contact,
          reference=order.id,
          description=f"ChopCart Order #{order.order_number or order.id}",
      )
    except (PaymentInitiationError, ProviderError) as e:
      logger.warning("Payment for order %s not started: %s", order.id, e)
      attempt.status = AttemptStatus.FAILED
      attempt.reason = e.message
      session.initiated.set()
      return _outcome(attempt, error_code=e.code, message=e.message)

    attempt.transaction_id = initiation.transaction_id
    attempt.checkout_url = initiation.checkout_url
    attempt.status = AttemptStatus.PROCESSING
    session.initiated.set()
    if attempt.method != order.payment_method:
      await self._switch_method(order.id, attempt.method)
    return await self._poll(attempt)

  async def _switch_method(self, order_id: str, method: PaymentMethod) -> None:
    # The webhook checks amounts against the method stored on the order.
    try:
      await self._backend.update_order_status(
          order_id, None, {"payment_method": method}
      )
    except ChopCartError as e:
      logger.warning(
          "Could not record %s as the method for order %s: %s",
          method.value,
          order_id,
          e,
      )

  async def _settle_cash(
      self, order: Order, session: PaymentSession
  ) -> PaymentOutcome:
    attempt = session.attempt
    reference = f"{CASH_REFERENCE_PREFIX}{order.id}"
    attempt.transaction_id = reference
    session.initiated.set()
    try:
      await self._backend.update_order_status(
          order.id,
          None,
          {
              "payment_method": PaymentMethod.CASH,
              "payment_status": PaymentStatus.PENDING,
              "payment_reference": reference,
          },
      )
    except ChopCartError as e:
      logger.error("Could not record cash payment for %s: %s", order.id, e)
      attempt.status = AttemptStatus.FAILED
      return _outcome(attempt, error_code=e.code, message=e.message)
    attempt.status = AttemptStatus.SUCCESSFUL
    return _outcome(
        attempt,
        message="Pay the runner in cash when your order arrives.",
        collect_on_delivery=True,
    )

  async def _poll(self, attempt: PaymentAttempt) -> PaymentOutcome:
    await asyncio.sleep(self.settings.poll_initial_delay)
    for poll in range(1, self.settings.max_poll_attempts + 1):
      if poll > 1:
        await asyncio.sleep(self.settings.poll_interval)
      attempt.polls = poll
      try:
        report = await self._provider.check_payment_status(
            attempt.transaction_id
        )
      except (ProviderError, httpx.HTTPError) as e:
        logger.warning(
            "Status check %d for %s failed: %s",
            poll,
            attempt.transaction_id,
            e,
        )
        continue

      if report.status == ProviderStatus.SUCCESSFUL:
        return await self._succeed(attempt, report)
      if report.status == ProviderStatus.FAILED:
        attempt.status = AttemptStatus.FAILED
        attempt.reason = report.reason or "Payment failed. Please try again."
        logger.info(
            "Payment %s for order %s failed: %s",
            attempt.transaction_id,
            attempt.order_id,
            attempt.reason,
        )
        return _outcome(
            attempt, error_code="PAYMENT_FAILED", message=attempt.reason
        )

    attempt.status = AttemptStatus.TIMED_OUT
    timeout = PaymentTimeout(
        "We could not confirm your payment yet. Check your order status"
        " later or contact support."
    )
    logger.warning(
        "Payment %s for order %s unresolved after %d polls",
        attempt.transaction_id,
        attempt.order_id,
        attempt.polls,
    )
    return _outcome(attempt, error_code=timeout.code, message=timeout.message)

  async def _succeed(
      self, attempt: PaymentAttempt, report: PaymentStatusReport
  ) -> PaymentOutcome:
    try:
      # Once started, the update finishes even if polling is cancelled.
      await asyncio.shield(
          self.apply_payment_success(
              attempt.order_id,
              attempt.transaction_id,
              report=report,
              method=attempt.method,
          )
      )
    except PaymentMismatchError as e:
      attempt.status = AttemptStatus.FAILED
      attempt.reason = e.message
      return _outcome(attempt, error_code=e.code, message=e.message)
    except ChopCartError as e:
      attempt.status = AttemptStatus.SUCCESSFUL
      logger.error(
          "Payment %s succeeded but order %s was not updated: %s",
          attempt.transaction_id,
          attempt.order_id,
          e,
      )
      return _outcome(
          attempt,
          error_code=e.code,
          message="Payment received. Your order will update shortly.",
      )
    attempt.status = AttemptStatus.SUCCESSFUL
    return _outcome(attempt, message="Payment successful.")
