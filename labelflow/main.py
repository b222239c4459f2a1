import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from labelflow.core.config import settings
from labelflow.core.deps import close_work_queue
from labelflow.core.errors import LabelflowError
from labelflow.core.log import setup_logging
from labelflow.db.session import Base, engine
import labelflow.models  # noqa: F401
from labelflow.routers.annotations import router as annotations_router
from labelflow.routers.exports import router as exports_router
from labelflow.routers.labels import router as labels_router
from labelflow.routers.projects import router as projects_router
from labelflow.routers.tasks import router as tasks_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.log_level)
    Base.metadata.create_all(bind=engine)
    yield
    close_work_queue()


app = FastAPI(title="Labelflow Backend", lifespan=lifespan)


@app.exception_handler(LabelflowError)
def handle_labelflow_error(request: Request, exc: LabelflowError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(projects_router)
app.include_router(tasks_router)
app.include_router(annotations_router)
app.include_router(labels_router)
app.include_router(exports_router)
