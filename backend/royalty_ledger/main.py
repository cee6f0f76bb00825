from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from royalty_ledger.api.v1 import api_v1_router
from royalty_ledger.platform.config import Settings, settings as default_settings
from royalty_ledger.platform.context import LedgerContext
from royalty_ledger.platform.errors import InvariantViolation, LedgerError, PendingReconciliationError

logger = logging.getLogger(__name__)


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    if isinstance(exc, InvariantViolation):
        logger.error("Invariant violation on %s %s: %s", request.method, request.url.path, exc.detail)

    body = {"detail": exc.detail}
    if isinstance(exc, PendingReconciliationError):
        body["withdrawal_id"] = exc.withdrawal_id
        body["status"] = "pending_reconciliation"

    return JSONResponse(status_code=exc.status_code, content=body)


def create_app(ledger: LedgerContext | None = None, app_settings: Settings | None = None) -> FastAPI:
    app_settings = app_settings or (ledger.settings if ledger is not None else default_settings)
    logging.basicConfig(level=app_settings.log_level.upper())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = ledger is None
        app.state.ledger = ledger if ledger is not None else LedgerContext.from_settings(app_settings)
        try:
            yield
        finally:
            if owned:
                await app.state.ledger.aclose()

    app = FastAPI(title="Royalty Ledger API", lifespan=lifespan)
    if ledger is not None:
        # ASGI test transports do not run lifespan events.
        app.state.ledger = ledger

    allowed_origins = [o.strip() for o in str(app_settings.allowed_origins).split(",") if o.strip()]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(LedgerError, ledger_error_handler)
    app.include_router(api_v1_router, prefix="/api/v1")
    return app


app = create_app()
