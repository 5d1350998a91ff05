#   _____        _____  _      ______ __     __
#  |  __ \ /\   |  __ \| |    |  ____|\ \   / /
#  | |__) /  \  | |__) | |    | |__    \ \_/ /
#  |  ___/ /\ \ |  _  /| |    |  __|    \   /
#  | |  / ____ \| | \ \| |____| |____    | |
#  |_| /_/    \_\_|  \_\______|______|   |_|
#

# Main FastAPI application entry point. Configures the app, middleware, store connections, and routes.

# --------------------------------------------------------------------------
#                                  Functions
# --------------------------------------------------------------------------
# init_firebase: Initialize Firebase Admin SDK using credentials from settings.
# check_firebase_health: Returns True if Firebase app is initialized.
# lifespan: Startup (stores, services, removal recovery) and shutdown (drain queue, end sessions).
# SecurityHeadersMiddleware.dispatch: Middleware to add security headers to responses.
# RequestIDMiddleware.dispatch: Middleware to generate and attach a unique X-Request-ID to every request.
# parley_exception_handler: Maps domain errors to HTTP status codes.
# global_exception_handler: Plain 500 for anything unhandled.
# root: Simple health check endpoint returning status ok.
# health: Health check for the store, Firebase and live chat counters.

# --------------------------------------------------------------------------
#                            Variables and others
# --------------------------------------------------------------------------
# app: The main FastAPI application instance.
# logger: Logger instance for this module.
# settings: Application settings loaded from config.

# --------------------------------------------------------------------------
#                                   imports
# --------------------------------------------------------------------------
# fastapi: Web framework.
# fastapi.middleware.cors: Middleware for handling CORS.
# contextlib.asynccontextmanager: Decorator for lifespan.
# firebase_admin: Firebase SDK for authentication.
# logging: standard logging library.
# uuid: For generating unique request IDs.
# starlette: Middleware base class and request type.
# parley.config.get_settings: Helper to load settings.
# parley.stores: Store backends.
# parley.dependencies: Service wiring.
# parley.routers: API route definitions.

from fastapi import FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import firebase_admin
from firebase_admin import credentials
import logging
import uuid
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from parley.config import get_settings
from parley.exceptions import ParleyError
from parley.stores import open_stores, close_stores
from parley.dependencies import build_services
from parley.routers import auth, profile, friends, conversations, chat

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def init_firebase():
    settings = get_settings()

    if firebase_admin._apps:
        return True

    if not settings.firebase_enabled:
        logger.warning("Firebase credentials not configured, token verification will fail")
        return False

    try:
        cred = credentials.Certificate(settings.firebase_credentials)
        firebase_admin.initialize_app(cred)
        logger.info("Firebase Admin SDK initialized")
        return True
    except Exception as e:
        logger.warning(f"Firebase Admin SDK initialization failed: {e}")
        return False


def check_firebase_health() -> bool:
    return bool(firebase_admin._apps)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info(f"Parley backend starting ({settings.store_backend} store)...")

    init_firebase()

    relationships, conversation_store = await open_stores(settings)
    services = build_services(relationships, conversation_store, settings, notify=chat.manager.send_json)
    app.state.stores = (relationships, conversation_store)
    app.state.services = services

    recovered = await services.graph.recover_pending_removals()
    if recovered:
        logger.info(f"Completed {recovered} interrupted friend removals")

    services.sessions.start()
    services.matchmaking.start()

    yield

    logger.info("Graceful shutdown: closing matchmaking and ending sessions...")
    dropped = await services.matchmaking.shutdown()
    ended = await services.sessions.shutdown()
    logger.info(f"Dropped {len(dropped)} searches and ended {ended} sessions during shutdown")

    await close_stores(settings)
    logger.info("Parley backend shutting down...")


app = FastAPI(
    title="parley",
    description="Friends, conversations and anonymous random chat API",
    version="1.0.0",
    lifespan=lifespan,
)

settings = get_settings()
logger.info(f"Configuring CORS for origins: {settings.cors_origins_list}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
    expose_headers=["*"],
    max_age=3600,
)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestIDMiddleware)


@app.exception_handler(ParleyError)
async def parley_exception_handler(request: Request, exc: ParleyError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors. Internal details are logged, never returned."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Something went wrong. Please try again later."},
    )


app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
app.include_router(profile.router, prefix="/api/profile", tags=["Profile"])
app.include_router(friends.router, prefix="/api/friends", tags=["Friends"])
app.include_router(conversations.router, prefix="/api/conversations", tags=["Conversations"])
app.include_router(chat.router, prefix="/api/chat", tags=["Chat"])


@app.get("/")
async def root():
    return {"status": "ok", "service": "parley"}


@app.get("/health")
async def health(request: Request):
    relationships, conversation_store = request.app.state.stores
    store_healthy = await relationships.ping() and await conversation_store.ping()
    firebase_healthy = check_firebase_health()
    services = request.app.state.services

    return {
        "status": "healthy" if store_healthy else "degraded",
        "version": "1.0.0",
        "services": {
            "store": "connected" if store_healthy else "disconnected",
            "firebase": "initialized" if firebase_healthy else "not_initialized",
        },
        "active_sessions": services.sessions.active_count,
        "searching": services.matchmaking.size,
        "online": chat.manager.get_online_count(),
    }
