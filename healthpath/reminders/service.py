import logging
import sys

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from healthpath.core.config import settings as core_settings
from .api import router as reminders_router
from .config import settings
from .exceptions import ReminderError

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    logging.basicConfig(
        level=core_settings.LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    app = FastAPI(title=core_settings.PROJECT_NAME, version=core_settings.VERSION)
    app.include_router(reminders_router, prefix=f"{core_settings.API_V1_STR}/reminders", tags=["reminders"])

    @app.exception_handler(ReminderError)
    async def reminder_error_handler(request: Request, exc: ReminderError):
        log = logger.warning if exc.status_code < 500 else logger.error
        log(f"HTTP {exc.status_code}: {exc} - {request.url}")
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(),
        )

    if settings.METRICS_ENABLED:
        Instrumentator().instrument(app).expose(app, endpoint="/metrics")
    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("healthpath.reminders.service:app", host="0.0.0.0", port=8000)
