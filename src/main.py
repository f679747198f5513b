import logging
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.v1.api import api_router
from core.config import get_settings
from core.error_handler import (
    ExceptionNormalizationMiddleware,
    domain_exception_handler,
    global_exception_handler,
    setup_logging,
)
from core.exceptions import DomainError
from core.middleware import CorrelationIdMiddleware
from core.observability import configure_observability
from core.scheduler import scheduler_lifespan
from dependencies.pipeline import get_services


logger = logging.getLogger(__name__)


def validate_cors_origins(origins: list[str]) -> list[str]:
    """Drop CORS origins that are not absolute http(s) URLs."""
    validated_origins = []
    for origin in origins:
        parsed = urlparse(origin)
        if parsed.scheme in {"http", "https"} and parsed.netloc:
            validated_origins.append(origin)
        else:
            logger.warning(f"Invalid CORS origin '{origin}' ignored")
    return validated_origins


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    setup_logging()
    configure_observability()
    services = get_services()
    await services.renderer.start()
    async with AsyncExitStack() as stack:
        stack.push_async_callback(services.renderer.close)
        if settings.SCHEDULER_ENABLED:
            await stack.enter_async_context(
                scheduler_lifespan(services.queue, services.campaigns)
            )
        yield


settings = get_settings()

app = FastAPI(
    title=f"{settings.APP_NAME} API",
    description="Drafts, renders and delivers development application submissions",
    version="0.1.0",
    docs_url=None,  # mounted under /api/v1/docs
    redoc_url=None,
    lifespan=lifespan,
)

app.add_middleware(ExceptionNormalizationMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=validate_cors_origins(list(settings.CORS_ORIGINS)),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(DomainError, domain_exception_handler)
app.add_exception_handler(RequestValidationError, global_exception_handler)
app.add_exception_handler(StarletteHTTPException, global_exception_handler)

app.include_router(api_router, prefix="/api/v1")


@app.get("/api/v1/docs", include_in_schema=False)
def custom_swagger_ui_html():
    return get_swagger_ui_html(
        openapi_url="/openapi.json", title=f"{settings.APP_NAME} API Docs"
    )


@app.get("/api/v1/redoc", include_in_schema=False)
def redoc_html():
    return get_redoc_html(openapi_url="/openapi.json", title=f"{settings.APP_NAME} API Redoc")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
