"""FastAPI API endpoints under /api.

Endpoint groups: settings (health, settings), generate (prompt preview,
generation, worldview/character expansion), templates (import, update,
delete) and sharing (share toggle, play, records, record meta).

Mutating endpoints pass the quota gate in app.state.gate; ownership is the
client address captured when the record was created.

Handlers that only touch SQLite are plain `def`, so FastAPI runs them in
its threadpool; the model-calling handlers push their storage calls there
with run_in_threadpool.
"""

from fastapi import APIRouter

from .generate import router as generate_router
from .settings import router as settings_router
from .sharing import router as sharing_router
from .templates import router as templates_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(generate_router)
router.include_router(templates_router)
router.include_router(sharing_router)
