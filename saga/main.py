import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import HTTPException as FastAPIHTTPException, RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .background import drain
from .database import init_db
from .routers import search as search_router
from .routers import wallet as wallet_router
from .services.errors import SagaError
from .services.scheduler import start_scheduler, stop_scheduler
from .settings.config import settings

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title="Saga Core")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Update for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ----------------------
# Route Includes
# ----------------------
app.include_router(search_router.router)
app.include_router(wallet_router.router)
app.include_router(wallet_router.admin_router)


# ----------------------
# Error envelopes
# ----------------------
HTTP_ERROR_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
}


def _error(status_code: int, error: dict) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


@app.exception_handler(SagaError)
async def _saga_error_handler(request: Request, exc: SagaError):
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    return _error(exc.status_code, exc.to_dict())


@app.exception_handler(FastAPIHTTPException)
async def _http_error_handler(request: Request, exc: FastAPIHTTPException):
    if isinstance(exc.detail, dict):
        error = dict(exc.detail)
    else:
        error = {"code": HTTP_ERROR_CODES.get(exc.status_code, "ERROR"), "message": str(exc.detail)}
    return _error(exc.status_code, error)


@app.exception_handler(RequestValidationError)
async def _request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "; ".join(
        f"{'.'.join(str(p) for p in e.get('loc', ()) if p != 'body')}: {e.get('msg')}" for e in errors
    )
    return _error(400, {"code": "VALIDATION_ERROR", "message": message or "Invalid request"})


# ----------------------
# Lifecycle
# ----------------------
@app.on_event("startup")
async def on_startup():
    from . import models  # noqa: F401  registers tables on Base.metadata
    await init_db()
    if settings.START_SCHEDULER:
        start_scheduler()


@app.on_event("shutdown")
async def on_shutdown():
    stop_scheduler()
    await drain(timeout=5)


@app.get("/health")
async def health():
    return {"success": True, "data": {"status": "ok"}}
