import logging

import uvicorn
import asyncio
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from config import LOG_LEVEL, SWEEP_INTERVAL_SECONDS
from db import create_db_and_tables
from handlers import api_router, redirect_router, router
from app.exceptions import ShortLinkError
from app.tasks import periodic_task

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
)
logger = logging.getLogger("shortlinks")

app = FastAPI(title="Short Links", description="URL shortener with click analytics")

app.include_router(router)
app.include_router(api_router)
app.include_router(redirect_router)


@app.exception_handler(ShortLinkError)
async def short_link_error_handler(request: Request, exc: ShortLinkError):
    logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc}")
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


@app.on_event("startup")
async def startup_event():
    await create_db_and_tables()
    if SWEEP_INTERVAL_SECONDS > 0:
        app.state.sweeper = asyncio.create_task(periodic_task(SWEEP_INTERVAL_SECONDS))


@app.on_event("shutdown")
async def shutdown_event():
    sweeper = getattr(app.state, "sweeper", None)
    if sweeper is not None:
        sweeper.cancel()


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
