import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from order_service.config import settings
from order_service.db import close_pool, get_pool, init_schema
from order_service.errors import OrderServiceError, ValidationFailedError, Violation
from order_service.metrics import get_metrics_bytes, get_metrics_content_type
from order_service.redis_client import close_redis, get_redis
from order_service.routes import orders, restaurants

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    pool = await get_pool()
    if settings.create_schema:
        await init_schema(pool)
    await get_redis()
    yield
    await close_redis()
    await close_pool()


app = FastAPI(title="Order Lifecycle Service", lifespan=lifespan)
app.include_router(orders.router)
app.include_router(restaurants.router)


@app.exception_handler(OrderServiceError)
async def order_service_error_handler(request: Request, exc: OrderServiceError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies, params and headers answer with the same violation list as field rules."""
    violations = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ())]
        field = ".".join(loc[1:]) if len(loc) > 1 else ".".join(loc)
        violations.append(Violation(field or "request", err.get("msg", "Invalid value")))
    error = ValidationFailedError(violations)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unexpected failure on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": str(exc) or exc.__class__.__name__})


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.get("/metrics")
async def metrics() -> Response:
    """Prometheus scrape endpoint: order writes and lifecycle transitions."""
    return Response(
        content=get_metrics_bytes(),
        media_type=get_metrics_content_type(),
    )
