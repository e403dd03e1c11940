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

"""Health check route."""

from fastapi import APIRouter

from .. import db

router = APIRouter()


@router.get("/health", operation_id="health")
async def health() -> dict[str, str]:
  """Reports whether the service is up and its database is ready."""
  return {
      "status": "ok",
      "database": "ready" if db.manager.initialized else "not_initialized",
  }
