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

"""Payment provider webhook.

Hubtel posts the final status of a transaction here. A successful payment is
recorded through the same `PaymentRecorder` the polling tasks use, so a
webhook and a poll confirming the same payment mark the order paid once. A
callback whose amount does not cover the order is refused.
"""

import logging
from typing import Any

from fastapi import APIRouter
from fastapi import Body
from fastapi import Depends

from .. import dependencies
from ..enums import ProviderStatus
from ..models import HubtelCallback
from ..models import PaymentStatusReport
from ..payments import PaymentRecorder
from ..providers import map_transaction_status

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/webhooks/payments",
    response_model=dict[str, Any],
    operation_id="payment_webhook",
    dependencies=[Depends(dependencies.verify_webhook_signature)],
)
async def payment_webhook(
    callback: HubtelCallback = Body(...),
    recorder: PaymentRecorder = Depends(dependencies.get_payment_recorder),
) -> dict[str, Any]:
  """Receive a payment status notification."""
  data = callback.data
  status = map_transaction_status(data.transaction_status)
  if callback.response_code != "0000" and status == ProviderStatus.PENDING:
    status = ProviderStatus.FAILED

  applied = False
  if status == ProviderStatus.SUCCESSFUL:
    report = PaymentStatusReport(
        status=status,
        transaction_id=data.transaction_id,
        client_reference=data.client_reference,
        amount=data.amount,
    )
    applied = await recorder.apply_payment_success(
        data.client_reference, data.transaction_id, report=report
    )
  else:
    # Failed payments leave the order pending so the student can retry.
    logger.info(
        "Payment %s for order %s reported %s: %s",
        data.transaction_id,
        data.client_reference,
        status.value,
        callback.message,
    )
  return {
      "order_id": data.client_reference,
      "status": status.value,
      "applied": applied,
  }
