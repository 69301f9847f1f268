import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.routes import router
from character_realm.chat import ChatController
from character_realm.errors import RealmError
from character_realm.events import EventSink, LoggingEventSink
from character_realm.groups import GroupController
from character_realm.llm import LLM
from character_realm.locks import SessionLocks
from character_realm.storage import Storage

load_dotenv(Path(__file__).parent.parent / ".env")

DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"

logger = logging.getLogger(__name__)

# env var -> key in the config "llm" section
_LLM_ENV = {
    "LLM_PROVIDER_URL": "provider_url",
    "LLM_API_KEY": "api_key",
    "LLM_PROVIDER_FORMAT": "provider_format",
    "LLM_MODEL": "model",
}


def _env_config_defaults() -> dict:
    llm = {key: os.environ[env] for env, key in _LLM_ENV.items() if os.getenv(env)}
    return {"llm": llm} if llm else {}


def create_app(
    data_dir: Path | None = None,
    llm: LLM | None = None,
    events: EventSink | None = None,
) -> FastAPI:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    resolved = data_dir or Path(os.getenv("DATA_DIR", str(DEFAULT_DATA_DIR)))
    storage = Storage(resolved, config_defaults=_env_config_defaults())
    locks = SessionLocks()
    events = events or LoggingEventSink()

    app = FastAPI(title="Character Realm")
    app.state.storage = storage
    app.state.chats = ChatController(storage, llm=llm, events=events, locks=locks)
    app.state.groups = GroupController(storage, llm=llm, events=events, locks=locks)
    app.include_router(router, prefix="/api")

    @app.exception_handler(RealmError)
    async def realm_error(request: Request, exc: RealmError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    return app


# Default app instance for uvicorn (uses DATA_DIR env var or default)
app = create_app()
