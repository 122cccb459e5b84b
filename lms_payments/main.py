import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from lms_payments.config import Settings
from lms_payments.database import Base, build_engine, build_session_factory
from lms_payments.errors import PaymentError
from lms_payments.fawaterak import FawaterakClient
from lms_payments.routes import router
from lms_payments.webhooks import router as webhook_router

logger = logging.getLogger(__name__)


def create_app(settings: Settings = None) -> FastAPI:
    settings = settings or Settings.from_env()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app = FastAPI(title="LMS Payments")
    app.state.settings = settings
    app.state.engine = build_engine(settings)
    app.state.session_factory = build_session_factory(app.state.engine)
    app.state.gateway = FawaterakClient(settings)

    app.include_router(router)
    app.include_router(webhook_router)

    Base.metadata.create_all(bind=app.state.engine)

    @app.exception_handler(PaymentError)
    async def payment_error_handler(request: Request, exc: PaymentError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"success": False, "detail": exc.message})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"success": False, "detail": "Internal Error"})

    return app


app = create_app()
