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

"""Order lookup, listing and status routes.

Runners and admins move orders through the lifecycle here; every change is
checked against the status machine. Students list their history, runners
list the orders open to them and the ones they have taken.
"""

from typing import Any

from fastapi import APIRouter
from fastapi import Body
from fastapi import Depends
from fastapi import Path
from fastapi import Query

from .. import dependencies
from ..backend import OrderBackend
from ..models import StatusUpdateRequest
from ..status import OrderStatusService

router = APIRouter()


@router.get(
    "/orders/{id}",
    response_model=dict[str, Any],
    operation_id="get_order",
)
async def get_order(
    order_id: str = Path(..., alias="id"),
    backend: OrderBackend = Depends(dependencies.get_backend),
) -> dict[str, Any]:
  """Get an order by ID."""
  order = await backend.get_order(order_id)
  return order.model_dump(mode="json")


@router.post(
    "/orders/{id}/status",
    response_model=dict[str, Any],
    operation_id="update_order_status",
)
async def update_order_status(
    order_id: str = Path(..., alias="id"),
    update: StatusUpdateRequest = Body(...),
    status_service: OrderStatusService = Depends(
        dependencies.get_status_service
    ),
) -> dict[str, Any]:
  """Move an order to a new status."""
  order = await status_service.update_status(
      order_id,
      update.from_status,
      update.to_status,
      runner_id=update.runner_id,
      cancellation_reason=update.cancellation_reason,
  )
  return order.model_dump(mode="json")


@router.get(
    "/available-orders",
    response_model=list[dict[str, Any]],
    operation_id="list_available_orders",
)
async def list_available_orders(
    backend: OrderBackend = Depends(dependencies.get_backend),
) -> list[dict[str, Any]]:
  """List pending orders no runner has accepted yet, oldest first."""
  orders = await backend.list_available_orders()
  return [order.model_dump(mode="json") for order in orders]


@router.get(
    "/students/{id}/orders",
    response_model=list[dict[str, Any]],
    operation_id="list_student_orders",
)
async def list_student_orders(
    student_id: str = Path(..., alias="id"),
    backend: OrderBackend = Depends(dependencies.get_backend),
) -> list[dict[str, Any]]:
  """List a student's order history, newest first."""
  orders = await backend.list_student_orders(student_id)
  return [order.model_dump(mode="json") for order in orders]


@router.get(
    "/runners/{id}/orders",
    response_model=list[dict[str, Any]],
    operation_id="list_runner_orders",
)
async def list_runner_orders(
    runner_id: str = Path(..., alias="id"),
    active: bool = Query(False),
    backend: OrderBackend = Depends(dependencies.get_backend),
) -> list[dict[str, Any]]:
  """List the orders a runner has taken, newest first."""
  orders = await backend.list_runner_orders(runner_id, active_only=active)
  return [order.model_dump(mode="json") for order in orders]
