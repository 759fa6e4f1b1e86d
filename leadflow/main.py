import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.orm import sessionmaker

from leadflow import config
from leadflow.api.routes import router
from leadflow.core.collaborators import Collaborators
from leadflow.core.engine import build_engine
from leadflow.db.database import SessionLocal, get_db, init_db

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)


def create_app(
    session_factory: sessionmaker | None = None,
    collaborators: Collaborators | None = None,
    start_workers: bool | None = None,
) -> FastAPI:
    session_factory = session_factory or SessionLocal

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db(bind=session_factory.kw.get("bind"))
        engine = build_engine(session_factory, collaborators)
        app.state.engine = engine

        run_workers = config.START_WORKERS if start_workers is None else start_workers
        trigger_loop = None
        if run_workers:
            engine.processor.start()
            trigger_loop = asyncio.create_task(
                engine.triggers.run_forever(config.TRIGGER_INTERVAL)
            )
        yield
        if trigger_loop is not None:
            trigger_loop.cancel()
        engine.processor.stop()
        await engine.processor.join(timeout=10.0)

    def session_for_app():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app = FastAPI(title="Leadflow Engine", lifespan=lifespan)
    app.state.session_factory = session_factory
    # Routes share the engine's database.
    app.dependency_overrides[get_db] = session_for_app
    app.include_router(router)
    return app


app = create_app()
