# calendar_backend/main.py
import html
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.middleware.cors import CORSMiddleware

from calendar_backend.auth import (
    SESSION_COOKIE,
    SESSION_TTL,
    STATE_COOKIE,
    STATE_TTL,
    IdentityVerifier,
    StateSigner,
    UserInfo,
    build_session_issuer,
    get_current_user,
)
from calendar_backend.config import GOOGLE_JWKS_URL, Settings, load_settings
from calendar_backend.database import create_db_and_tables, create_engine, create_session_factory, get_session
from calendar_backend.exceptions import AppError, AuthenticationError
from calendar_backend.jwks import JWKSCache
from calendar_backend.oauth import GoogleOAuthClient
from calendar_backend.repositories import SQLMeetingRepository, SQLUserRepository, UserRepository
from calendar_backend.schemas import (
    CreateEventRequest,
    CreateEventResponse,
    EventResponse,
    EventsResponse,
    HealthCheckResponse,
    parse_rfc3339,
)
from calendar_backend.services.auth_service import AuthService
from calendar_backend.services.calendar_service import CalendarService, CreateEventInput, GoogleCalendarClient

logger = logging.getLogger(__name__)

LOGIN_PAGE = """<!doctype html>
<html><head><title>Login</title></head>
<body><h1>Meetings</h1><p>{message}</p><a href="/auth/google/login">Sign in with Google</a></body></html>"""

DASHBOARD_PAGE = """<!doctype html>
<html><head><title>Dashboard</title></head>
<body><h1>Dashboard</h1><p>Signed in as {email}</p><a href="/logout">Log out</a></body></html>"""


# --- Dependencies ---
def get_user_repository(session: AsyncSession = Depends(get_session)) -> UserRepository:
    return SQLUserRepository(session)


def get_calendar_service(request: Request, session: AsyncSession = Depends(get_session)) -> CalendarService:
    return CalendarService(
        user_repo=SQLUserRepository(session),
        meeting_repo=SQLMeetingRepository(session),
        calendar_client=request.app.state.calendar_client,
        oauth_client=request.app.state.oauth_client,
    )


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _set_cookie(response, settings: Settings, key: str, value: str, max_age: Optional[int] = None) -> None:
    response.set_cookie(
        key, value, max_age=max_age, path="/", httponly=True, secure=settings.is_production, samesite="lax"
    )


def _clear_cookie(response, settings: Settings, key: str) -> None:
    response.delete_cookie(key, path="/", httponly=True, secure=settings.is_production, samesite="lax")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or load_settings()

    engine = create_engine(settings.db_url)
    oauth_client = GoogleOAuthClient(settings)
    jwks_cache = JWKSCache(GOOGLE_JWKS_URL, cache_ttl=settings.jwks_cache_ttl_seconds)
    session_issuer = build_session_issuer(settings)
    verifier = IdentityVerifier(oauth_client, jwks_cache, client_id=settings.google_client_id)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting up and creating database tables...")
        await create_db_and_tables(engine)
        try:
            await jwks_cache.refresh_keys()
        except Exception as e:
            logger.warning(f"Could not prefetch Google signing keys, will retry on first login: {e}")
        logger.info("Startup complete.")
        yield
        await jwks_cache.close()
        await engine.dispose()
        logger.info("Shutdown complete.")

    app = FastAPI(title="Calendar Meetings API", lifespan=lifespan)
    app.state.settings = settings
    app.state.session_factory = create_session_factory(engine)
    app.state.oauth_client = oauth_client
    app.state.session_issuer = session_issuer
    app.state.state_signer = StateSigner(settings.csrf_secret)
    app.state.auth_service = AuthService(verifier, session_issuer)
    app.state.calendar_client = GoogleCalendarClient(timeout=settings.google_api_timeout_seconds)

    if settings.client_url:
        app.add_middleware(
            CORSMiddleware, allow_origins=[settings.client_url], allow_credentials=True,
            allow_methods=["GET", "POST"], allow_headers=["Content-Type", "Authorization"],
        )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f}ms)")
        return response

    # --- Error handlers ---
    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}", exc_info=exc)
        else:
            logger.info(f"{request.method} {request.url.path} rejected: {exc}")
        return JSONResponse({"detail": exc.public_message}, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def handle_bad_payload(request: Request, exc: RequestValidationError):
        logger.info(f"Failed to decode request body: {exc.errors()}")
        return JSONResponse({"detail": "Invalid request payload"}, status_code=400)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.exception(f"unexpected error: {type(exc).__name__}")
        return JSONResponse({"detail": "Internal Server Error"}, status_code=500)

    # --- Public routes ---
    @app.get("/health", response_model=HealthCheckResponse)
    async def health_check():
        return HealthCheckResponse(status="healthy")

    @app.get("/login", response_class=HTMLResponse)
    async def login_page():
        return LOGIN_PAGE.format(message="Please log in to access your dashboard.")

    @app.get("/auth/google/login")
    async def google_login(request: Request):
        state = request.app.state.state_signer.new_state()
        response = RedirectResponse(url=oauth_client.authorization_url(state), status_code=303)
        _set_cookie(response, settings, STATE_COOKIE, state, max_age=int(STATE_TTL.total_seconds()))
        return response

    @app.get("/auth/google/callback", name="auth_callback")
    async def auth_callback(
        request: Request,
        auth_service: AuthService = Depends(get_auth_service),
        user_repo: UserRepository = Depends(get_user_repository),
    ):
        state_cookie = request.cookies.get(STATE_COOKIE)
        if not state_cookie:
            logger.warning("State cookie not found")
            return JSONResponse({"detail": "State cookie not found"}, status_code=400)
        if not request.app.state.state_signer.is_valid(state_cookie, request.query_params.get("state")):
            logger.warning("Invalid state parameter")
            return JSONResponse({"detail": "Invalid state parameter"}, status_code=400)

        code = request.query_params.get("code")
        if not code:
            logger.warning("No code found in request")
            response = JSONResponse({"detail": "Code not found"}, status_code=400)
            _clear_cookie(response, settings, STATE_COOKIE)
            return response

        try:
            session_token = await auth_service.handle_google_callback(user_repo, code)
        except AuthenticationError as e:
            logger.error(f"Error handling Google callback: {e}")
            response = JSONResponse({"detail": e.public_message}, status_code=500)
            _clear_cookie(response, settings, STATE_COOKIE)
            return response

        response = RedirectResponse(url="/api/dashboard", status_code=303)
        _clear_cookie(response, settings, STATE_COOKIE)
        _set_cookie(response, settings, SESSION_COOKIE, session_token, max_age=int(SESSION_TTL.total_seconds()))
        return response

    @app.get("/logout")
    async def logout():
        response = RedirectResponse(url="/login", status_code=303)
        _clear_cookie(response, settings, SESSION_COOKIE)
        return response

    # --- Protected routes ---
    @app.get("/api/dashboard", response_class=HTMLResponse)
    async def dashboard(current_user: UserInfo = Depends(get_current_user)):
        return DASHBOARD_PAGE.format(email=html.escape(current_user.email))

    @app.post("/api/events", status_code=201, response_model=CreateEventResponse)
    async def create_event(
        event_request: CreateEventRequest,
        current_user: UserInfo = Depends(get_current_user),
        calendar_service: CalendarService = Depends(get_calendar_service),
    ):
        start_time = parse_rfc3339(event_request.start_time, "start time")
        end_time = parse_rfc3339(event_request.end_time, "end time")
        event_id = await calendar_service.create_event(
            CreateEventInput(
                title=event_request.title,
                description=event_request.description,
                start_time=start_time,
                end_time=end_time,
                attendees=event_request.attendees,
                created_by=current_user.email,
            )
        )
        return CreateEventResponse(message="Event created successfully", event_id=event_id)

    @app.get("/api/events", response_model=EventsResponse)
    async def list_events(
        current_user: UserInfo = Depends(get_current_user),
        calendar_service: CalendarService = Depends(get_calendar_service),
    ):
        events = await calendar_service.list_events(current_user.email)
        return EventsResponse(events=[EventResponse(**vars(e)) for e in events])

    return app
