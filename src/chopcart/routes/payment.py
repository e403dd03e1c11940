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

"""Manual payment verification.

Lets a student whose payment timed out ask for one more status check of a
transaction instead of paying again.
"""

from typing import Any

from fastapi import APIRouter
from fastapi import Body
from fastapi import Depends
from fastapi import Path
from pydantic import BaseModel

from .. import dependencies
from ..backend import OrderBackend
from ..enums import ProviderStatus
from ..payments import PaymentRecorder
from ..providers import PaymentProvider

router = APIRouter()


class VerifyPaymentRequest(BaseModel):
  transaction_id: str


@router.post(
    "/orders/{id}/payment/verify",
    response_model=dict[str, Any],
    operation_id="verify_payment",
)
async def verify_payment(
    order_id: str = Path(..., alias="id"),
    verify: VerifyPaymentRequest = Body(...),
    backend: OrderBackend = Depends(dependencies.get_backend),
    provider: PaymentProvider = Depends(dependencies.get_payment_provider),
    recorder: PaymentRecorder = Depends(dependencies.get_payment_recorder),
) -> dict[str, Any]:
  """Check a transaction with the provider and record it if it succeeded.

  The transaction must have been raised for this order and cover its total.
  """
  # Fail with 404 before calling the provider for an unknown order.
  await backend.get_order(order_id)
  report = await provider.check_payment_status(verify.transaction_id)
  applied = False
  if report.status == ProviderStatus.SUCCESSFUL:
    applied = await recorder.apply_payment_success(
        order_id, verify.transaction_id, report=report
    )
  order = await backend.get_order(order_id)
  return {
      "status": report.status.value,
      "reason": report.reason,
      "applied": applied,
      "payment_status": order.payment_status.value,
  }
