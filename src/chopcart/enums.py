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

"""Enumerations for the ChopCart order engine.

This module defines the standard enums used throughout the package to
represent order lifecycle states, payment states and payment methods.
"""

import enum


class OrderStatus(str, enum.Enum):
  PENDING = "pending"
  ACCEPTED = "accepted"
  SHOPPING = "shopping"
  DELIVERING = "delivering"
  COMPLETED = "completed"
  CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
  PENDING = "pending"
  PAID = "paid"
  FAILED = "failed"
  REFUNDED = "refunded"


class PaymentMethod(str, enum.Enum):
  MOMO = "momo"
  CARD = "card"
  CASH = "cash"


class AttemptStatus(str, enum.Enum):
  """Lifecycle of a single payment attempt."""

  INITIATED = "initiated"
  PROCESSING = "processing"
  SUCCESSFUL = "successful"
  FAILED = "failed"
  TIMED_OUT = "timed_out"

  @property
  def is_terminal(self) -> bool:
    return self not in (AttemptStatus.INITIATED, AttemptStatus.PROCESSING)


class ProviderStatus(str, enum.Enum):
  """Transaction status as reported by the payment provider."""

  PENDING = "pending"
  SUCCESSFUL = "successful"
  FAILED = "failed"


class LineItemKind(str, enum.Enum):
  CATALOG = "catalog"
  CUSTOM = "custom"
