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

"""Database management and persistence layer for ChopCart.

This module provides the schema definitions, database session management and
asynchronous data access helpers behind the SQLite order backend and the
key-value cart storage. It uses SQLAlchemy with SQLite (via aiosqlite).

Key features include:
- `DatabaseManager`: Handles asynchronous engine initialization and the
  session factory.
- WAL Mode: Enables SQLite Write-Ahead Logging so the service and background
  payment tasks can share the file.
- Declarative Models: Tables for order headers, order line items and
  key-value entries.
- Data Access Helpers: Asynchronous CRUD functions used by the collaborators.
"""

import datetime
import logging
from typing import Any
from typing import Dict
from typing import List
from typing import Optional
from typing import Sequence

from sqlalchemy import Column
from sqlalchemy import ForeignKey
from sqlalchemy import Integer
from sqlalchemy import JSON
from sqlalchemy import String
from sqlalchemy import Text
from sqlalchemy import delete
from sqlalchemy import select
from sqlalchemy import text
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)

Base = declarative_base()

ORDER_NUMBER_PREFIX = "DK"


class DatabaseManager:
  """Manages the database engine and sessions without using global state."""

  def __init__(self) -> None:
    self.engine: Optional[AsyncEngine] = None
    self.session_factory: Optional[sessionmaker] = None

  @property
  def initialized(self) -> bool:
    return self.session_factory is not None

  async def init_db(self, db_path: str, **engine_kwargs: Any) -> None:
    """Initializes the database engine and creates tables."""
    url = f"sqlite+aiosqlite:///{db_path}"
    self.engine = create_async_engine(url, echo=False, **engine_kwargs)

    async with self.engine.connect() as conn:
      await conn.execute(text("PRAGMA journal_mode=WAL"))

    self.session_factory = sessionmaker(
        self.engine, expire_on_commit=False, class_=AsyncSession
    )

    async with self.engine.begin() as conn:
      await conn.run_sync(Base.metadata.create_all)
    logger.info("Database ready at %s", db_path)

  async def close(self) -> None:
    """Disposes of the engine."""
    if self.engine:
      await self.engine.dispose()
    self.engine = None
    self.session_factory = None


# Global manager instance (to be initialized via lifespan)
manager = DatabaseManager()


class OrderRecord(Base):
  __tablename__ = "orders"

  # Integer key doubles as the order number sequence.
  seq = Column(Integer, primary_key=True, autoincrement=True)
  id = Column(String, unique=True, index=True, nullable=False)
  order_number = Column(String, unique=True, nullable=True)
  status = Column(String, index=True)
  payment_status = Column(String)
  student_id = Column(String, index=True, nullable=True)
  runner_id = Column(String, index=True, nullable=True)
  created_at = Column(String)
  updated_at = Column(String)
  data = Column(JSON)


class OrderLineItemRecord(Base):
  __tablename__ = "order_line_items"

  id = Column(Integer, primary_key=True, autoincrement=True)
  order_id = Column(String, ForeignKey("orders.id"), index=True)
  position = Column(Integer)
  data = Column(JSON)


class KeyValueEntry(Base):
  __tablename__ = "kv_store"

  key = Column(String, primary_key=True)
  value = Column(Text)
  updated_at = Column(String)


def _now() -> str:
  return datetime.datetime.now(datetime.timezone.utc).isoformat()


# --- Data Access Helpers ---


async def insert_order(
    session: AsyncSession, order_id: str, order_obj: Dict[str, Any]
) -> str:
  """Inserts an order header and assigns its order number.

  Args:
    session: The database session to use.
    order_id: The identifier of the new order.
    order_obj: JSON-able order header.

  Returns:
    The generated human readable order number, e.g. 'DK000042'.
  """
  record = OrderRecord(
      id=order_id,
      status=order_obj.get("status"),
      payment_status=order_obj.get("payment_status"),
      student_id=order_obj.get("student_id"),
      runner_id=order_obj.get("runner_id"),
      created_at=order_obj.get("created_at") or _now(),
      updated_at=_now(),
      data=order_obj,
  )
  session.add(record)
  await session.flush()

  order_number = f"{ORDER_NUMBER_PREFIX}{record.seq:06d}"
  record.order_number = order_number
  record.data = {**order_obj, "id": order_id, "order_number": order_number}
  return order_number


async def lock_order(
    session: AsyncSession,
    order_id: str,
    expected_status: Optional[str] = None,
) -> bool:
  """Opens a write on an order row.

  Must be the first statement of the transaction: SQLite takes its write lock
  here and holds it until commit, so later reads in the same transaction see
  the latest committed header and no other writer can interleave.

  Args:
    session: The database session to use.
    order_id: The order to lock.
    expected_status: If set, only lock the order while it is in this status.

  Returns:
    False if no order matched.
  """
  stmt = (
      update(OrderRecord)
      .where(OrderRecord.id == order_id)
      .values(updated_at=_now())
      .execution_options(synchronize_session=False)
  )
  if expected_status is not None:
    stmt = stmt.where(OrderRecord.status == expected_status)
  result = await session.execute(stmt)
  return result.rowcount > 0


async def get_order_status(
    session: AsyncSession, order_id: str
) -> Optional[str]:
  result = await session.execute(
      select(OrderRecord.status).where(OrderRecord.id == order_id)
  )
  return result.scalar_one_or_none()


async def save_order(
    session: AsyncSession, order_id: str, order_obj: Dict[str, Any]
) -> bool:
  """Updates an existing order header. Returns False if it does not exist."""
  result = await session.execute(
      update(OrderRecord)
      .where(OrderRecord.id == order_id)
      .values(
          status=order_obj.get("status"),
          payment_status=order_obj.get("payment_status"),
          runner_id=order_obj.get("runner_id"),
          updated_at=_now(),
          data=order_obj,
      )
      .execution_options(synchronize_session=False)
  )
  return result.rowcount > 0


async def get_order(
    session: AsyncSession, order_id: str
) -> Optional[Dict[str, Any]]:
  """Retrieves an order header by ID."""
  result = await session.execute(
      select(OrderRecord.data).where(OrderRecord.id == order_id)
  )
  return result.scalar_one_or_none()


async def add_order_line_items(
    session: AsyncSession, order_id: str, items: List[Dict[str, Any]]
) -> None:
  """Replaces the line items attached to an order."""
  await session.execute(
      delete(OrderLineItemRecord).where(
          OrderLineItemRecord.order_id == order_id
      )
  )
  for position, item in enumerate(items):
    session.add(
        OrderLineItemRecord(order_id=order_id, position=position, data=item)
    )


async def get_order_line_items(
    session: AsyncSession, order_id: str
) -> List[Dict[str, Any]]:
  """Retrieves the line items of an order in their original order."""
  result = await session.execute(
      select(OrderLineItemRecord.data)
      .where(OrderLineItemRecord.order_id == order_id)
      .order_by(OrderLineItemRecord.position)
  )
  return list(result.scalars().all())


async def list_orders(
    session: AsyncSession,
    student_id: Optional[str] = None,
    runner_id: Optional[str] = None,
    statuses: Optional[Sequence[str]] = None,
    unassigned: bool = False,
    newest_first: bool = True,
) -> List[Dict[str, Any]]:
  """Lists order headers matching every given filter."""
  stmt = select(OrderRecord.data)
  if student_id is not None:
    stmt = stmt.where(OrderRecord.student_id == student_id)
  if runner_id is not None:
    stmt = stmt.where(OrderRecord.runner_id == runner_id)
  if statuses:
    stmt = stmt.where(OrderRecord.status.in_(list(statuses)))
  if unassigned:
    stmt = stmt.where(OrderRecord.runner_id.is_(None))
  stmt = stmt.order_by(
      OrderRecord.seq.desc() if newest_first else OrderRecord.seq
  )
  result = await session.execute(stmt)
  return list(result.scalars().all())


async def get_line_items_by_order(
    session: AsyncSession, order_ids: Sequence[str]
) -> Dict[str, List[Dict[str, Any]]]:
  """Retrieves the line items of several orders, keyed by order id."""
  items: Dict[str, List[Dict[str, Any]]] = {
      order_id: [] for order_id in order_ids
  }
  if not order_ids:
    return items
  result = await session.execute(
      select(OrderLineItemRecord.order_id, OrderLineItemRecord.data)
      .where(OrderLineItemRecord.order_id.in_(list(order_ids)))
      .order_by(OrderLineItemRecord.order_id, OrderLineItemRecord.position)
  )
  for order_id, data in result.all():
    items[order_id].append(data)
  return items


async def get_value(session: AsyncSession, key: str) -> Optional[str]:
  """Retrieves a stored value by key."""
  entry = await session.get(KeyValueEntry, key)
  if entry:
    return entry.value
  return None


async def set_value(session: AsyncSession, key: str, value: str) -> None:
  """Saves or updates a stored value."""
  existing = await session.get(KeyValueEntry, key)
  if existing:
    existing.value = value
    existing.updated_at = _now()
  else:
    session.add(KeyValueEntry(key=key, value=value, updated_at=_now()))


async def remove_value(session: AsyncSession, key: str) -> None:
  """Deletes a stored value. Missing keys are ignored."""
  await session.execute(delete(KeyValueEntry).where(KeyValueEntry.key == key))
