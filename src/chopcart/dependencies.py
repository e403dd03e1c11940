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

"""FastAPI dependencies for the ChopCart service.

This module contains dependency injection logic for FastAPI endpoints,
including:
- Collaborator instantiation (order backend, status service).
- The process-wide payment recorder shared by webhook deliveries.
- The Hubtel client configured from command line flags.
- HMAC-SHA256 verification of payment webhook bodies.
"""

import functools
import hashlib
import hmac
import logging
from typing import AsyncGenerator
from typing import Optional

from fastapi import Depends
from fastapi import Header
from fastapi import HTTPException
from fastapi import Request

from . import config
from . import db
from .backend import OrderBackend
from .backend import SqlOrderBackend
from .exceptions import ProviderError
from .payments import PaymentRecorder
from .providers import HubtelPaymentProvider
from .providers import PaymentProvider
from .status import OrderStatusService

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"


def get_backend() -> OrderBackend:
  """Dependency provider for the order backend."""
  return SqlOrderBackend(db.manager)


def get_status_service(
    backend: OrderBackend = Depends(get_backend),
) -> OrderStatusService:
  """Dependency provider for OrderStatusService."""
  return OrderStatusService(backend)


@functools.lru_cache(maxsize=None)
def get_payment_recorder() -> PaymentRecorder:
  """Dependency provider for the shared PaymentRecorder."""
  return PaymentRecorder(SqlOrderBackend(db.manager))


def get_webhook_secret() -> Optional[str]:
  """Webhook secret from flags; None when unset or flags are not parsed."""
  if not config.FLAGS.is_parsed():
    return None
  return config.FLAGS.webhook_secret


def compute_signature(secret: str, body: bytes) -> str:
  return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


async def verify_webhook_signature(
    request: Request,
    signature: Optional[str] = Header(None, alias=SIGNATURE_HEADER),
    secret: Optional[str] = Depends(get_webhook_secret),
) -> None:
  """Rejects webhook calls whose body signature does not match.

  Verification is skipped when no webhook secret is configured.
  """
  if not secret:
    return
  body = await request.body()
  expected = compute_signature(secret, body)
  if not signature or not hmac.compare_digest(signature, expected):
    logger.warning("Rejected webhook with bad signature")
    raise HTTPException(status_code=401, detail="Invalid webhook signature")


async def get_payment_provider() -> AsyncGenerator[PaymentProvider, None]:
  """Dependency provider for the Hubtel client."""
  if not config.FLAGS.is_parsed() or not config.FLAGS.hubtel_client_id:
    raise ProviderError("Payment provider is not configured.")
  callback_url = ""
  if config.FLAGS.callback_base_url:
    callback_url = (
        config.FLAGS.callback_base_url.rstrip("/") + "/webhooks/payments"
    )
  provider = HubtelPaymentProvider(
      config.FLAGS.hubtel_client_id,
      config.FLAGS.hubtel_client_secret or "",
      base_url=config.FLAGS.hubtel_base_url,
      callback_url=callback_url,
      settings=config.settings_from_flags(),
  )
  try:
    yield provider
  finally:
    await provider.close()
