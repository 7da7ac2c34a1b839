"""
Mail Bridge API
FastAPI application translating HTTP calls into IMAP mailbox operations and
outbound mail delivery.
"""

import logging
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.config import get_settings
from app.routers import mail, mcp
from app.services.delivery import get_delivery

# Configure logging to output to console
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

settings = get_settings()

ENDPOINTS = ["/health", "/mailboxes", "/emails", "/email/:uid", "/search", "/send", "/mcp"]

app = FastAPI(
    title="Mail Bridge API",
    description="HTTP bridge to IMAP mailboxes and outbound mail delivery",
    version=settings.version,
)

# allow_credentials cannot be combined with a wildcard origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials="*" not in settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(mail.router, tags=["mail"])
app.include_router(mcp.router, tags=["mcp"])


# ---------------------------------------------------------------------------
# Error envelope: every failure answers {"error": "<message>"}
# ---------------------------------------------------------------------------

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed query/body values answer 400, naming the offending field."""
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("query", "body", "path"))
        message = f"Invalid {field}: {first.get('msg')}" if field else str(first.get("msg"))
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.on_event("startup")
async def log_startup() -> None:
    """
    Log the endpoints the bridge talks to and the delivery strategy in use.

    Example output:

        Mail Bridge running on port 3000
          IMAP: imap.mail.me.com:993
          SMTP: smtp.mail.me.com:465
          Delivery: smtp
    """
    logger.info(
        "%s running on port %s\n"
        "  IMAP: %s:%s\n"
        "  SMTP: %s:%s\n"
        "  Delivery: %s",
        settings.service_name,
        settings.port,
        settings.imap_host,
        settings.imap_port,
        settings.smtp_host,
        settings.smtp_port,
        get_delivery().name,
    )


@app.get("/")
async def root():
    return {
        "status": "ok",
        "service": settings.service_name,
        "version": settings.version,
        "endpoints": ENDPOINTS,
        "delivery": get_delivery().name,
    }


@app.get("/health")
async def health():
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}


if __name__ == "__main__":
    uvicorn.run("app.main:app", host="0.0.0.0", port=settings.port)
