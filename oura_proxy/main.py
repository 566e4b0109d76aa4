import argparse
import logging
import os
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from oura_proxy.config import LOG_LEVEL, OURA_FALLBACK_TRIGGER, OURA_REQUEST_TIMEOUT

# Configure logging to match uvicorn's format
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(levelname)s:     %(name)s - %(message)s",
)

from oura_proxy.assembler import assemble_response
from oura_proxy.errors import MethodNotAllowedError, ProxyError
from oura_proxy.oura_client import DataSource, OuraClient
from oura_proxy.resolver import FallbackTrigger, MetricResolver
from oura_proxy.validator import validate_request

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

fetch_router = APIRouter(tags=["oura"])

# Global resolver instance, initialized at startup
metric_resolver: MetricResolver | None = None


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    # Environment variable takes precedence, then CLI arg, then default
    env_data_source = os.environ.get("DATA_SOURCE")
    default_source = env_data_source if env_data_source else DataSource.USER.value

    parser = argparse.ArgumentParser(description="Oura check-in proxy")
    parser.add_argument(
        "--data-source",
        type=str,
        choices=[ds.value for ds in DataSource],
        default=default_source,
        help="Data source: 'user' (real Oura API) or 'sandbox' (Oura sandbox API)",
    )
    parser.add_argument(
        "--fallback-trigger",
        type=str,
        choices=[trigger.value for trigger in FallbackTrigger],
        default=OURA_FALLBACK_TRIGGER,
        help="When to retry sleep/readiness on the adjacent date",
    )
    # Use parse_known_args to ignore uvicorn's arguments when running with uvicorn
    args, _ = parser.parse_known_args()
    return args


def create_resolver(data_source: DataSource, fallback_trigger: FallbackTrigger) -> MetricResolver:
    """Create a MetricResolver backed by an OuraClient for the data source."""
    client = OuraClient(data_source=data_source, timeout=OURA_REQUEST_TIMEOUT)
    return MetricResolver(client, fallback_trigger=fallback_trigger)


def get_resolver() -> MetricResolver:
    """Dependency returning the process-wide resolver, creating it if startup did not."""
    global metric_resolver
    if metric_resolver is None:
        args = parse_args()
        metric_resolver = create_resolver(DataSource(args.data_source), FallbackTrigger(args.fallback_trigger))
    return metric_resolver


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    resolver = get_resolver()
    logger.info(
        f"Starting with fallback trigger: {resolver.fallback_trigger.value}"
    )
    yield


app = FastAPI(
    title="Oura Check-In Proxy",
    description="""
## Oura Check-In Proxy

Fetches Oura Ring metrics for the morning/evening health check-in and returns
them as one flat, null-safe object.

### Modes
- `morning`: scores and last night's sleep/heart rate from the previous day, activity from today
- `evening`: scores from today, last night's sleep/heart rate from the previous day
- no mode: every metric from the requested date

When no sleep or readiness score exists yet, the adjacent date is tried once.
    """,
    version="0.1.0",
    lifespan=lifespan,
)


@app.middleware("http")
async def add_cors_headers(request: Request, call_next):
    """Allow the journal page to call the proxy from any origin."""
    response = await call_next(request)
    for name, value in CORS_HEADERS.items():
        response.headers[name] = value
    return response


@app.exception_handler(ProxyError)
async def proxy_error_handler(request: Request, exc: ProxyError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 405:
        return JSONResponse(status_code=405, content=MethodNotAllowedError().to_body(), headers=exc.headers)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    # Runs outside the CORS middleware, so the headers are set here
    logger.exception(f"Unhandled error on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content=ProxyError(str(exc)).to_body(), headers=CORS_HEADERS)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "ok",
        "message": "Oura Check-In Proxy",
        "data_source": metric_resolver.client.data_source.value if metric_resolver else "not initialized",
    }


@fetch_router.options("/fetch-oura")
async def fetch_oura_preflight():
    """Answer cross-origin preflight with an empty 200."""
    return Response(status_code=200)


@fetch_router.post("/fetch-oura")
async def fetch_oura(request: Request, resolver: MetricResolver = Depends(get_resolver)):
    """
    Get the Oura metrics for a check-in.

    Body: `ouraToken` (required), `date` (YYYY-MM-DD, defaults to today),
    `mode` (`morning` or `evening`, optional).

    Every metric field is null when Oura has nothing for it yet. `dataDate`
    is the day the scores came from and `note` explains any date fallback.
    """
    fetch_request = validate_request(await request.body())

    try:
        metrics = await resolver.resolve(
            fetch_request.token,
            fetch_request.mode,
            fetch_request.requested_date,
        )
    except ProxyError:
        raise
    except Exception as e:
        logger.exception(f"Error fetching Oura data: {e}")
        raise ProxyError(str(e))

    if metrics.is_empty:
        logger.info(f"No Oura data recorded yet for {fetch_request.requested_date} ({fetch_request.mode.value})")
    return assemble_response(metrics)


app.include_router(fetch_router, prefix="/api")
app.include_router(fetch_router)
