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

"""ChopCart order service (Python/FastAPI)."""

import logging
import sys
from typing import Sequence

from absl import app as absl_app
from fastapi import FastAPI
from fastapi import Request
from fastapi.responses import JSONResponse
import uvicorn

from . import config
from .exceptions import ChopCartError
from .routes.health import router as health_router
from .routes.order import router as order_router
from .routes.payment import router as payment_router
from .routes.webhooks import router as webhooks_router

# --- App Setup ---

logger = logging.getLogger(__name__)

app = FastAPI(
    title="ChopCart Order Service",
    version="0.1.0",
    description="Order lookup, status transitions and payment webhooks",
    lifespan=config.lifespan,
)


@app.exception_handler(ChopCartError)
async def chopcart_exception_handler(request: Request, exc: ChopCartError):
  """Converts ChopCart exceptions to JSON responses."""
  del request  # Unused.
  return JSONResponse(
      status_code=exc.status_code,
      content={"detail": exc.message, "code": exc.code},
  )


app.include_router(health_router)
app.include_router(order_router)
app.include_router(payment_router)
app.include_router(webhooks_router)


def main(argv: Sequence[str]) -> None:
  """Main entry point for the ChopCart order service."""
  del argv  # Unused.
  logging.basicConfig(level=logging.INFO)

  if config.FLAGS.db_path is None or config.FLAGS.port is None:
    logger.error("Both --db_path and --port must be provided.")
    print("\nUsage:")
    print(config.FLAGS.main_module_help())
    sys.exit(1)

  if not config.FLAGS.webhook_secret:
    logger.warning("No --webhook_secret set; webhook bodies are not verified")

  uvicorn.run(app, host=config.FLAGS.host, port=config.FLAGS.port)


def run() -> None:
  """Console script entry point."""
  absl_app.run(main)


if __name__ == "__main__":
  run()
