from contextlib import asynccontextmanager
import logging

import aiohttp
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette import status

from couchpenter import __version__
from couchpenter.models.couchpenter import TaskFailedResponse
from couchpenter.routes.couchpenter import router as commands_router
from couchpenter.services.errors import CouchpenterError, TaskFailedError


def _ensure_logging() -> None:
    formatter = logging.Formatter("%(levelname)s: %(message)s")
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    else:
        root.setLevel(logging.INFO)
        for handler in root.handlers:
            handler.setFormatter(formatter)


@asynccontextmanager
async def lifespan(app: FastAPI):
    _ensure_logging()
    async with aiohttp.ClientSession() as session:
        app.state.http_session = session
        yield


app = FastAPI(title="Couchpenter", version=__version__, lifespan=lifespan)

app.include_router(commands_router)


@app.exception_handler(TaskFailedError)
async def task_failed_error_handler(request: Request, exc: TaskFailedError) -> JSONResponse:
    """Report the failed task and what already ran before it.

    Returns:
        502 Bad Gateway with a JSON body: {"detail", "task", "index", "completed"}
    """
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content=TaskFailedResponse(
            detail=str(exc),
            task=exc.task,
            index=exc.index,
            completed=exc.completed,
        ).model_dump(),
    )


@app.exception_handler(CouchpenterError)
async def couchpenter_error_handler(request: Request, exc: CouchpenterError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": str(exc)},
    )


@app.get("/")
async def root():
    return {"message": "Couchpenter is running."}
