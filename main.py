import asyncio
import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

import schemas
from audit import actor, create_audit_entry, list_entries, verify_audit_chain
from auth_routes import router as auth_router
from database import session_scope
from dependencies import get_current_user_id, get_db, get_services
from errors import StorageUnavailable, Unauthenticated, ValidationError, VaultError
from file_routes import router as files_router
from services import VaultServices, build_services
from share_routes import router as share_router

load_dotenv()

SERVICE_NAME = "FileVault"
VERSION = "1.0.0"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()]
SHARE_SWEEP_INTERVAL_SECONDS = float(os.getenv("SHARE_SWEEP_INTERVAL_SECONDS", "3600"))

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
logger = logging.getLogger(__name__)


def _sweep_once(services: VaultServices) -> int:
    for db in session_scope(services.session_factory):
        return services.shares.purge_expired(db)


async def _sweep_expired_shares(services: VaultServices, interval: float):
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(_sweep_once, services)
        except Exception:
            logger.exception("Expired share sweep failed")


def _error_body(code: str, message: str) -> dict:
    return {"code": code, "message": message}


def create_app(services: VaultServices = None, sweep_interval: float = None) -> FastAPI:
    sweep_interval = SHARE_SWEEP_INTERVAL_SECONDS if sweep_interval is None else sweep_interval

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = services is None
        app.state.services = services or build_services()
        sweeper = None
        if sweep_interval > 0:
            sweeper = asyncio.create_task(_sweep_expired_shares(app.state.services, sweep_interval))
        logger.info(f"{SERVICE_NAME} {VERSION} started")
        try:
            yield
        finally:
            if sweeper is not None:
                sweeper.cancel()
            if owned:
                app.state.services.close()

    app = FastAPI(
        title="FileVault API",
        description="Secure file storage with time-limited anonymous share tokens",
        version=VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ─── Error mapping ────────────────────────────────────────────────────────

    @app.exception_handler(VaultError)
    async def vault_error_handler(request: Request, exc: VaultError):
        if isinstance(exc, StorageUnavailable):
            logger.error(f"{request.method} {request.url.path}: storage failure: {exc.detail}")
        else:
            logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code} ({exc.detail})")
        headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthenticated) else None
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc.code, exc.message),
                            headers=headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        fields = ", ".join(".".join(str(p) for p in err["loc"][1:]) or "body" for err in exc.errors())
        return JSONResponse(status_code=ValidationError.status_code,
                            content=_error_body(ValidationError.code, f"Malformed request: {fields}"))

    @app.exception_handler(OperationalError)
    async def database_error_handler(request: Request, exc: OperationalError):
        logger.exception(f"{request.method} {request.url.path}: database unavailable")
        return JSONResponse(status_code=StorageUnavailable.status_code,
                            content=_error_body(StorageUnavailable.code, StorageUnavailable.message))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(status_code=500, content=_error_body("internal_error", "Internal server error"))

    # ─── Routers ──────────────────────────────────────────────────────────────

    error_responses = {status: {"model": schemas.ErrorResponse}
                       for status in (400, 401, 404, 409, 413, 422, 503)}
    app.include_router(auth_router, responses=error_responses)
    app.include_router(files_router, responses=error_responses)
    app.include_router(share_router, responses=error_responses)

    # ─── Health & Audit ───────────────────────────────────────────────────────

    @app.get("/health", response_model=schemas.HealthOut, tags=["System"])
    def health(services: VaultServices = Depends(get_services)):
        return {"status": "ok", "service": SERVICE_NAME, "version": VERSION,
                "storage": services.storage.get_health()}

    @app.get("/audit-logs", response_model=list[schemas.AuditEntryOut], tags=["Audit"])
    def get_audit_logs(db: Session = Depends(get_db),
                       user_id: int = Depends(get_current_user_id)):
        return list_entries(db, actor(user_id))

    @app.get("/audit-logs/verify", response_model=schemas.AuditChainReport, tags=["Audit"])
    def verify_audit_integrity(db: Session = Depends(get_db),
                               user_id: int = Depends(get_current_user_id)):
        result = verify_audit_chain(db)
        create_audit_entry(db, "AUDIT_CHAIN_VERIFIED", user=actor(user_id))
        return result

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        log_level=LOG_LEVEL.lower(),
    )
