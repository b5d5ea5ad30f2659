from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from leaveflow.api.routes import balances, health, leaves, notifications, requesters, schedule
from leaveflow.core.config import get_settings
from leaveflow.core.exceptions import AppError
from leaveflow.core.logging import configure_logging
from leaveflow.core.middleware import RequestLoggingMiddleware
from leaveflow.db.bootstrap import ensure_schema
from leaveflow.services.notifications import get_notification_dispatcher

settings = get_settings()


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging(settings.log_level)
    ensure_schema()
    yield
    if get_notification_dispatcher.cache_info().currsize:
        get_notification_dispatcher().shutdown(wait=True)


async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.message, "details": exc.details},
    )


app = FastAPI(title=settings.project_name, lifespan=lifespan)
app.add_exception_handler(AppError, app_error_handler)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, prefix=settings.api_prefix, tags=["health"])
app.include_router(requesters.router, prefix=settings.api_prefix, tags=["requesters"])
app.include_router(leaves.router, prefix=settings.api_prefix, tags=["leaves"])
app.include_router(balances.router, prefix=settings.api_prefix, tags=["balances"])
app.include_router(schedule.router, prefix=settings.api_prefix, tags=["schedule"])
app.include_router(notifications.router, prefix=settings.api_prefix, tags=["notifications"])
