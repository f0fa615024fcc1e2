# app/main.py

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from app.api.middleware import CorrelationIdMiddleware, RequestLogMiddleware
from app.api.routers import events, health
from app.application.exceptions import ApplicationError, PersistenceError
from app.config.logging import configure_logging
from app.config.settings import get_settings
from app.core.bootstrap import build_runtime
from app.domain.exceptions import DomainError

settings = get_settings()
configure_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    runtime = await build_runtime(settings)
    app.state.event_system = runtime.event_system
    await runtime.event_system.start()
    try:
        yield
    finally:
        await runtime.close()


app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    debug=settings.debug,
    lifespan=lifespan,
)

# Middleware order: last added runs first (outermost). Request flow: CorrelationId -> RequestLog.
app.add_middleware(RequestLogMiddleware)
app.add_middleware(CorrelationIdMiddleware)


@app.exception_handler(DomainError)
async def domain_error_handler(request, exc: DomainError):
    return JSONResponse(status_code=400, content={"detail": exc.message})


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request, exc: PersistenceError):
    return JSONResponse(status_code=503, content={"detail": exc.message})


@app.exception_handler(ApplicationError)
async def application_error_handler(request, exc: ApplicationError):
    return JSONResponse(status_code=500, content={"detail": exc.message})


@app.exception_handler(Exception)
async def unexpected_error_handler(request, exc: Exception):
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


# Routers: /health, /events
app.include_router(health.router)
app.include_router(events.router, prefix="/events")
