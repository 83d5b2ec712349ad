import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend import storage
from backend.routes import router
from backend.routes.generate import build_llm
from movie_games.errors import MovieGamesError
from movie_games.quota import QuotaGate
from movie_games.sanitizer import ContentSanitizer

load_dotenv(Path(__file__).parent.parent / ".env")

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"


async def handle_domain_error(request: Request, exc: MovieGamesError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


def create_app(data_dir: Path | None = None) -> FastAPI:
    resolved = data_dir or Path(os.getenv("DATA_DIR", str(DEFAULT_DATA_DIR)))
    storage.init_storage(resolved)

    app = FastAPI(title="Movie Games")
    app.state.gate = QuotaGate(storage.SqliteCounterStore())
    app.state.sanitizer = ContentSanitizer.from_env(resolved, storage.get_config()["sensitive_words"])
    # swapped for a stub in tests
    app.state.llm_factory = build_llm

    app.add_exception_handler(MovieGamesError, handle_domain_error)
    app.include_router(router, prefix="/api")
    return app


# Default app instance for uvicorn (uses DATA_DIR env var or default)
app = create_app()
