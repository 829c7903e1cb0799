# chitfund/main.py
import logging

import uvicorn

from chitfund import config

# =====================================================
# LOGGING
# =====================================================
logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
log = logging.getLogger("chitfund.main")

# =====================================================
# FASTAPI CORE
# =====================================================
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chitfund.db import init_db
from chitfund.errors import ChitFundError

app = FastAPI(
    title="Chit Fund Backend",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# =====================================================
# MIDDLEWARE
# =====================================================
allowed_origins = [
    config.FRONTEND_URL,
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
]

if config.CORS_ALLOW_ALL:
    allowed_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =====================================================
# ERRORS
# =====================================================
@app.exception_handler(ChitFundError)
async def chitfund_error_handler(request: Request, exc: ChitFundError):
    if exc.status_code >= 500:
        log.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.detail, exc.extra)
    body = {"detail": exc.detail}
    if exc.extra is not None and exc.status_code >= 500:
        body["error"] = exc.extra
    return JSONResponse(status_code=exc.status_code, content=body)


# =====================================================
# AUTO LOAD ALL API ROUTES
# =====================================================
from chitfund.api import build_api_router

app.include_router(build_api_router(), prefix="/api")


# =====================================================
# STARTUP
# =====================================================
@app.on_event("startup")
def on_startup():
    init_db()
    log.info("Chit fund backend started")


@app.get("/health")
def health():
    return {"status": "ok"}


def run():
    uvicorn.run("chitfund.main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    run()
