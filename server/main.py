import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from config.config import SESSION_SECRET_KEY, FRONTEND_URL, LOG_LEVEL, UPLOAD_DIR
from database.DB import Database
from routes import AdminRouter, AuthRouter, EventRouter, RegistrationRouter, PaymentRouter
from services.errors import EngineError
from services.notifications import EmailNotifier, NotificationDispatcher, NotificationLog
from services.storage import LocalFileStore

logging.basicConfig(
    level=LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("festival")

''' The backend API Endpoints setup '''

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Collaborators already placed on app.state (tests) are kept
    if getattr(app.state, "db", None) is None:
        db = Database()
        db.connect()
        app.state.db = db
    await app.state.db.ensure_indexes()
    logger.info("Database connected and indexes ensured")

    if getattr(app.state, "dispatcher", None) is None:
        app.state.dispatcher = NotificationDispatcher(EmailNotifier(), log=NotificationLog(app.state.db))
    if getattr(app.state, "file_store", None) is None:
        app.state.file_store = LocalFileStore(UPLOAD_DIR)

    yield

    pending = app.state.dispatcher.pending
    if pending:
        logger.info("Waiting for %d notifications before shutdown", pending)
    await app.state.dispatcher.drain()
    logger.info("Application shutting down")

app = FastAPI(lifespan=lifespan)


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, error: EngineError):
    if error.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, error.message)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, error: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"success": False, "kind": "internal_error", "message": "Server error"})


allowed_origins = [FRONTEND_URL]
if FRONTEND_URL != "http://localhost:5173":
    allowed_origins.append("http://localhost:5173")

logger.info("CORS allowed origins: %s", allowed_origins)

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
    max_age=3600,
)

if not SESSION_SECRET_KEY:
    raise ValueError("SESSION_SECRET_KEY environment variable not set!")

app.add_middleware(
    SessionMiddleware,
    secret_key=SESSION_SECRET_KEY,
    session_cookie="session",
    max_age=3600,
    same_site="none",
    https_only=True
)

# Include routers
app.include_router(AuthRouter.router, prefix="/api", tags=["Authentication"])
app.include_router(EventRouter.router, prefix="/api/events", tags=["Events"])
app.include_router(RegistrationRouter.router, prefix="/api/registrations", tags=["Registrations"])
app.include_router(PaymentRouter.router, prefix="/api/payments", tags=["Payments"])
app.include_router(AdminRouter.router, prefix="/api/admin", tags=["Admin"])
