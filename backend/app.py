import asyncio
import contextlib
import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

from backend.hub import SyncHub
from backend.routes import router
from quest_manager.collaborators import StaticIdentity
from quest_manager.config import get_settings
from quest_manager.context import QuestContext
from quest_manager.errors import StaleSnapshot, StorageError
from quest_manager.storage import Storage
from quest_manager.sync import SyncProtocol

load_dotenv(Path(__file__).parent.parent / ".env")

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"


def _gm_user_ids() -> list[str]:
    return [u.strip() for u in os.getenv("QUEST_MANAGER_GMS", "gm").split(",") if u.strip()]


def create_app(data_dir: Path | None = None) -> FastAPI:
    resolved = data_dir or Path(os.getenv("DATA_DIR", str(DEFAULT_DATA_DIR)))
    identity = StaticIdentity(os.getenv("QUEST_MANAGER_USER", "gm"), _gm_user_ids())
    ctx = QuestContext(Storage(resolved), identity, get_settings(resolved))
    ctx.load()
    hub = SyncHub()
    sync = SyncProtocol(ctx, hub)

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        await sync.connect(delay=0)
        autosave = asyncio.create_task(ctx.autosave_forever())
        yield
        autosave.cancel()
        sync.close()
        if ctx.dirty:
            try:
                ctx.save()
            except (StaleSnapshot, StorageError):
                logger.exception("Final save failed, unsaved changes are lost")

    app = FastAPI(title="Quest Manager", lifespan=lifespan)
    app.state.data_dir = resolved
    app.state.ctx = ctx
    app.state.hub = hub
    app.state.sync = sync
    app.include_router(router, prefix="/api")
    return app


# Default app instance for uvicorn (uses DATA_DIR env var or default)
app = create_app()
