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

"""Shared configuration and startup logic for the ChopCart engine.

`Settings` carries every tunable the engine reads: fee rates, cart limits and
the payment polling budget. Library code receives a `Settings` instance
explicitly; only the service entry point reads absl flags.
"""

import contextlib
from decimal import Decimal
from typing import List

from absl import flags
from fastapi import FastAPI
from pydantic import BaseModel
from pydantic import Field

from . import db
from .enums import PaymentMethod

FLAGS = flags.FLAGS

DEFAULT_HUBTEL_BASE_URL = "https://api.hubtel.com/v1"


class Settings(BaseModel):
  """Engine configuration with the app's production defaults."""

  currency: str = "GHS"

  min_order_amount: Decimal = Decimal("5.00")
  delivery_fee: Decimal = Decimal("2.00")
  service_fee_rate: Decimal = Decimal("0.05")
  max_cart_items: int = Field(50, ge=1)

  momo_fee_rate: Decimal = Decimal("0.01")
  momo_min_fee: Decimal = Decimal("0.50")
  card_fee_rate: Decimal = Decimal("0.025")
  min_payment_amount: Decimal = Decimal("1.00")
  max_payment_amount: Decimal = Decimal("10000.00")
  enable_card_payments: bool = True

  # 5 second grace period, then every 10 seconds for 5 minutes.
  poll_initial_delay: float = Field(5.0, ge=0)
  poll_interval: float = Field(10.0, ge=0)
  max_poll_attempts: int = Field(30, ge=1)

  cart_storage_key: str = "cart-store"

  def supported_payment_methods(self) -> List[PaymentMethod]:
    """Cash is always available; card can be switched off."""
    methods = [PaymentMethod.CASH]
    if self.enable_card_payments:
      methods.append(PaymentMethod.CARD)
    methods.append(PaymentMethod.MOMO)
    return methods


# Define flags only if they haven't been defined yet (to avoid duplicates
# during tests or re-imports)
try:
  flags.DEFINE_string("db_path", None, "Path to the orders/storage DB")
  flags.DEFINE_string("host", "0.0.0.0", "Host to bind the server to")
  flags.DEFINE_integer("port", None, "Port to run the server on")
  flags.DEFINE_string(
      "hubtel_base_url", DEFAULT_HUBTEL_BASE_URL, "Hubtel API base URL"
  )
  flags.DEFINE_string("hubtel_client_id", None, "Hubtel merchant client id")
  flags.DEFINE_string("hubtel_client_secret", None, "Hubtel client secret")
  flags.DEFINE_string(
      "callback_base_url", "", "Public base URL for provider callbacks"
  )
  flags.DEFINE_string(
      "webhook_secret", None, "Shared secret for payment webhook signatures"
  )
  flags.DEFINE_bool("enable_card_payments", True, "Offer card payments")
except flags.DuplicateFlagError:
  pass


def settings_from_flags() -> Settings:
  """Builds engine settings from parsed command line flags."""
  return Settings(enable_card_payments=FLAGS.enable_card_payments)


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
  """Shared lifespan manager for initializing the database."""
  del app  # Unused.
  # Tests configure the database themselves and leave the flags unparsed.
  owns_db = FLAGS.is_parsed() and bool(FLAGS.db_path)
  if owns_db:
    await db.manager.init_db(FLAGS.db_path)
  yield
  if owns_db:
    await db.manager.close()
