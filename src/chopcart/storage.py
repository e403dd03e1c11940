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

"""Key-value storage used to keep the cart across sessions."""

import abc
from typing import Dict
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from . import db
from .exceptions import PersistenceError


class KeyValueStorage(abc.ABC):
  """Durable string storage keyed by name."""

  @abc.abstractmethod
  async def get(self, key: str) -> Optional[str]:
    """Returns the stored value, or None if the key is absent."""

  @abc.abstractmethod
  async def set(self, key: str, value: str) -> None:
    """Stores `value` under `key`, replacing any previous value."""

  @abc.abstractmethod
  async def remove(self, key: str) -> None:
    """Deletes `key`. Removing an absent key is not an error."""


class InMemoryStorage(KeyValueStorage):
  """Process-local storage for tests and ephemeral sessions."""

  def __init__(self, initial: Optional[Dict[str, str]] = None):
    self.data: Dict[str, str] = dict(initial or {})

  async def get(self, key: str) -> Optional[str]:
    return self.data.get(key)

  async def set(self, key: str, value: str) -> None:
    self.data[key] = value

  async def remove(self, key: str) -> None:
    self.data.pop(key, None)


class SqliteStorage(KeyValueStorage):
  """Storage backed by the `kv_store` table.

  Each call opens its own session and releases it when the call returns.
  Keys can be namespaced per student with `namespace`.
  """

  def __init__(
      self,
      manager: Optional[db.DatabaseManager] = None,
      namespace: str = "",
  ):
    self._manager = manager or db.manager
    self._namespace = namespace

  def _key(self, key: str) -> str:
    if self._namespace:
      return f"{self._namespace}:{key}"
    return key

  async def get(self, key: str) -> Optional[str]:
    try:
      async with self._manager.session_factory() as session:
        return await db.get_value(session, self._key(key))
    except SQLAlchemyError as e:
      raise PersistenceError(f"Failed to read '{key}': {e}") from e

  async def set(self, key: str, value: str) -> None:
    try:
      async with self._manager.session_factory() as session:
        await db.set_value(session, self._key(key), value)
        await session.commit()
    except SQLAlchemyError as e:
      raise PersistenceError(f"Failed to write '{key}': {e}") from e

  async def remove(self, key: str) -> None:
    try:
      async with self._manager.session_factory() as session:
        await db.remove_value(session, self._key(key))
        await session.commit()
    except SQLAlchemyError as e:
      raise PersistenceError(f"Failed to remove '{key}': {e}") from e
