from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from quorumgate.api.routers import health, requests, policies
from quorumgate.api.schemas.common import ErrorResponse
from quorumgate.common.logger import configure_from_settings
from quorumgate.core.approval import (
    AlreadyTerminal,
    ApprovalError,
    DuplicateApproval,
    Expired,
    NotFound,
    NotReady,
    OperationNotSupported,
    PolicyNotFound,
    Unauthorized,
)
from quorumgate.core.config import get_settings
from quorumgate.db.session import init_db

settings = get_settings()
logger = configure_from_settings(settings)

# Engine errors not listed here are conflicts with the target entity
ERROR_STATUS = {
    NotFound: 404,
    Unauthorized: 403,
    DuplicateApproval: 409,
    AlreadyTerminal: 409,
    NotReady: 409,
    Expired: 410,
    PolicyNotFound: 422,
    OperationNotSupported: 400,
}


def status_for(exc: ApprovalError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 409


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info("%s started", settings.app_name)
    yield


app = FastAPI(
    title=settings.app_name,
    description="Threshold approval engine for tokenization operations",
    version="0.1.0",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ApprovalError)
async def approval_error_handler(request: Request, exc: ApprovalError):
    status_code = status_for(exc)
    logger.info("%s on %s: %s", exc.code, request.url.path, exc.message)
    body = ErrorResponse(
        error=exc.code,
        detail=exc.message,
        request_id=str(exc.request_id) if exc.request_id else None,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump())


# Include routers
app.include_router(health.router)
app.include_router(requests.router, prefix="/api")
app.include_router(policies.router, prefix="/api")


@app.get("/")
async def root():
    return {
        "name": settings.app_name,
        "version": "0.1.0",
        "docs": "/docs" if settings.debug else None,
    }
