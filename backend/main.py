from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings
from db.database import engine as db_engine, Base, SessionLocal
from api.routine import router as routine_router
from services.document_store import PersistenceError, SqlDocumentStore, UserDocumentNotFound
from services.event_log_store import EventLogStore
from services.reference_plan import load_reference_table
from services.routine_engine import RoutineEngine

logger = logging.getLogger(__name__)

settings.validate_configuration()


def build_engine() -> RoutineEngine:
    """Construct the process-wide engine and its collaborators."""
    store = EventLogStore(SqlDocumentStore(SessionLocal, max_retries=settings.STORE_UPDATE_MAX_RETRIES))
    reference = load_reference_table(settings.REFERENCE_TABLE_PATH)
    return RoutineEngine(store, reference, settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=db_engine)
    routine_engine = build_engine()
    routine_engine.queue.start()
    app.state.engine = routine_engine
    try:
        yield
    finally:
        await routine_engine.queue.stop()
        logger.info(
            "Background queue stopped (completed=%d failed=%d)",
            routine_engine.queue.completed,
            routine_engine.queue.failed,
        )


app = FastAPI(title=settings.APP_NAME, version="1.0.0", lifespan=lifespan)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(UserDocumentNotFound)
async def user_not_found_handler(request: Request, exc: UserDocumentNotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    logger.warning("Persistence failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Storage temporarily unavailable"})


# Routers
app.include_router(routine_router, prefix="/api")


@app.get("/api/health")
def health_check():
    return {"status": "ok", "app": settings.APP_NAME}
