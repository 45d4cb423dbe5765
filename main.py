##########
# Imports
##########
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.middleware.sessions import SessionMiddleware

from config import (
    API_PREFIX,
    CORS_ORIGINS,
    COOKIE_SAMESITE,
    COOKIE_SECURE,
    DATABASE_NAME,
    LOG_LEVEL,
    PORT,
    RATE_LIMIT,
    RATE_LIMIT_ENABLED,
    SESSION_SECRET,
    missing_settings,
)
from database import create_client, create_indexes
from errors import register_exception_handlers
from routers import auth, comments, posts, search, topics, users


#################
# Logging
#################
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("blog")


######################
# Database Lifecycle
######################
@asynccontextmanager
async def lifespan(app: FastAPI):
    missing = missing_settings()
    if missing:
        raise RuntimeError(f"Missing required settings: {', '.join(missing)}")

    client = create_client()
    app.state.mongo_client = client
    app.state.db = client[DATABASE_NAME]
    await create_indexes(app.state.db)
    logger.info("Connected to MongoDB database %s", DATABASE_NAME)
    yield
    client.close()
    logger.info("MongoDB connection closed")


#####################
# FastAPI App Setup
#####################
app = FastAPI(title="Blog API", description="REST backend for a multi-user blog", lifespan=lifespan)

limiter = Limiter(key_func=get_remote_address, default_limits=[RATE_LIMIT], enabled=RATE_LIMIT_ENABLED)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
register_exception_handlers(app)


##############
# Middleware
##############
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(
    SessionMiddleware,
    secret_key=SESSION_SECRET or "",
    same_site=COOKIE_SAMESITE,
    https_only=COOKIE_SECURE,
)
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    response.headers["Content-Security-Policy"] = (
        "default-src 'self'; img-src 'self' https: data: blob:; frame-ancestors 'none'"
    )
    return response


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    elapsed_ms = (time.time() - start_time) * 1000
    logger.info("%s %s -> %s (%.1fms)", request.method, request.url.path, response.status_code, elapsed_ms)
    return response


##########
# Routes
##########
for module in (auth, users, posts, comments, topics, search):
    app.include_router(module.router, prefix=API_PREFIX)


@app.get("/")
async def health():
    """Health probe"""
    return {"status": "ok"}


###############
# Entry Point
###############
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
