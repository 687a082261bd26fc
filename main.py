import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
import errors
from auth import SessionManager
from database import create_store
from meetings import MeetingRegistry
from schemas import (
    AuthResponse,
    ChangePasswordPayload,
    ForgotPasswordPayload,
    LoginPayload,
    Meeting,
    MeetingCreate,
    MessageResponse,
    Participant,
    RegisterPayload,
    ResetPasswordPayload,
    UpdateProfilePayload,
    UserIdentity,
    UserResponse,
)
from storage import create_storage

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")

RESET_SENT_MESSAGE = "If an account with that email exists, a password reset link has been sent"


def create_app(sessions: Optional[SessionManager] = None, registry: Optional[MeetingRegistry] = None) -> FastAPI:
    app = FastAPI(title="MeetClone API")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.sessions = sessions or SessionManager(create_store())
    app.state.registry = registry or MeetingRegistry(create_storage())

    register_error_handlers(app)
    app.include_router(auth_router)
    app.include_router(meetings_router)
    app.include_router(misc_router)
    return app


# Error handlers

def _error(status_code: int, message: str, headers=None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message}, headers=headers)


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(errors.AppError)
    async def app_error_handler(request: Request, exc: errors.AppError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
        return _error(exc.status_code, exc.message, headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        fields = sorted({".".join(str(p) for p in e["loc"][1:]) or "body" for e in exc.errors()})
        return _error(status.HTTP_400_BAD_REQUEST, f"Missing or invalid fields: {', '.join(fields)}")

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail), getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "An unexpected error occurred")


# Dependencies

def get_sessions(request: Request) -> SessionManager:
    return request.app.state.sessions


def get_registry(request: Request) -> MeetingRegistry:
    return request.app.state.registry


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    sessions: SessionManager = Depends(get_sessions),
) -> UserIdentity:
    identity = sessions.verify(token)
    if identity is None:
        raise errors.AuthError("Invalid token")
    return identity


# Auth routes
auth_router = APIRouter(prefix="/auth", tags=["auth"])


@auth_router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(payload: RegisterPayload, sessions: SessionManager = Depends(get_sessions)):
    result = sessions.register(payload.name, payload.email, payload.password, payload.avatar)
    return {"user": result.user, "token": result.token}


@auth_router.post("/login", response_model=AuthResponse)
def login(payload: LoginPayload, sessions: SessionManager = Depends(get_sessions)):
    result = sessions.authenticate(payload.email, payload.password)
    return {"user": result.user, "token": result.token}


@auth_router.get("/me", response_model=UserResponse)
def me(current_user: UserIdentity = Depends(get_current_user), sessions: SessionManager = Depends(get_sessions)):
    return {"user": sessions.get_user(current_user.id)}


@auth_router.put("/update-profile", response_model=AuthResponse)
def update_profile(
    payload: UpdateProfilePayload,
    current_user: UserIdentity = Depends(get_current_user),
    sessions: SessionManager = Depends(get_sessions),
):
    result = sessions.update_profile(
        current_user,
        name=payload.name,
        email=payload.email,
        bio=payload.bio,
        phone=payload.phone,
        avatar=payload.avatar,
    )
    return {"user": result.user, "token": result.token}


@auth_router.post("/change-password", response_model=MessageResponse)
def change_password(
    payload: ChangePasswordPayload,
    current_user: UserIdentity = Depends(get_current_user),
    sessions: SessionManager = Depends(get_sessions),
):
    sessions.change_password(current_user, payload.current_password, payload.new_password)
    return {"message": "Password changed successfully"}


@auth_router.post("/forgot-password")
def forgot_password(payload: ForgotPasswordPayload, sessions: SessionManager = Depends(get_sessions)):
    token = sessions.request_password_reset(payload.email)
    response = {"message": RESET_SENT_MESSAGE}
    if token and not config.is_production():
        reset_link = f"{config.APP_URL}/auth/reset-password?token={token}"
        logger.info("Password reset link generated (development only)")
        response["resetLink"] = reset_link
    return response


@auth_router.post("/reset-password", response_model=MessageResponse)
def reset_password(payload: ResetPasswordPayload, sessions: SessionManager = Depends(get_sessions)):
    sessions.consume_password_reset(payload.token, payload.password)
    return {"message": "Password has been reset successfully"}


# Meetings
meetings_router = APIRouter(prefix="/meetings", tags=["meetings"])


def _get_meeting(registry: MeetingRegistry, meeting_id: str) -> Meeting:
    meeting = registry.get(meeting_id)
    if not meeting:
        raise errors.NotFoundError("Meeting not found")
    return meeting


@meetings_router.post("", response_model=Meeting, status_code=status.HTTP_201_CREATED)
def create_meeting(
    payload: Optional[MeetingCreate] = None,
    current_user: UserIdentity = Depends(get_current_user),
    registry: MeetingRegistry = Depends(get_registry),
):
    settings = payload.settings.model_dump(exclude_none=True) if payload and payload.settings else None
    return registry.create(current_user.id, current_user.name, settings)


@meetings_router.get("", response_model=List[Meeting])
def list_active_meetings(
    current_user: UserIdentity = Depends(get_current_user),
    registry: MeetingRegistry = Depends(get_registry),
):
    return registry.list_active()


@meetings_router.get("/mine", response_model=List[Meeting])
def list_my_meetings(
    current_user: UserIdentity = Depends(get_current_user),
    registry: MeetingRegistry = Depends(get_registry),
):
    return registry.list_by_host(current_user.id)


@meetings_router.get("/{meeting_id}", response_model=Meeting)
def get_meeting(
    meeting_id: str,
    current_user: UserIdentity = Depends(get_current_user),
    registry: MeetingRegistry = Depends(get_registry),
):
    return _get_meeting(registry, meeting_id)


@meetings_router.post("/{meeting_id}/join", response_model=Meeting)
def join_meeting(
    meeting_id: str,
    current_user: UserIdentity = Depends(get_current_user),
    registry: MeetingRegistry = Depends(get_registry),
):
    meeting = registry.join(meeting_id, current_user.id, current_user.name)
    if not meeting:
        raise errors.NotFoundError("Meeting not found or has ended")
    return meeting


@meetings_router.post("/{meeting_id}/leave")
def leave_meeting(
    meeting_id: str,
    current_user: UserIdentity = Depends(get_current_user),
    registry: MeetingRegistry = Depends(get_registry),
):
    if not registry.leave(meeting_id, current_user.id):
        raise errors.NotFoundError("Meeting not found")
    return {"left": True}


@meetings_router.post("/{meeting_id}/end")
def end_meeting(
    meeting_id: str,
    current_user: UserIdentity = Depends(get_current_user),
    registry: MeetingRegistry = Depends(get_registry),
):
    meeting = _get_meeting(registry, meeting_id)
    if meeting.host_id != current_user.id:
        raise errors.PermissionDenied("Only the host can end the meeting")
    registry.end(meeting_id)
    return {"ended": True}


def _toggle(registry: MeetingRegistry, meeting_id: str, user_id: str, toggle) -> Participant:
    if not toggle(meeting_id, user_id):
        raise errors.NotFoundError("Meeting or participant not found")
    return registry.get(meeting_id).find_participant(user_id)


@meetings_router.post("/{meeting_id}/mute", response_model=Participant)
def toggle_mute(
    meeting_id: str,
    current_user: UserIdentity = Depends(get_current_user),
    registry: MeetingRegistry = Depends(get_registry),
):
    return _toggle(registry, meeting_id, current_user.id, registry.toggle_mute)


@meetings_router.post("/{meeting_id}/video", response_model=Participant)
def toggle_video(
    meeting_id: str,
    current_user: UserIdentity = Depends(get_current_user),
    registry: MeetingRegistry = Depends(get_registry),
):
    return _toggle(registry, meeting_id, current_user.id, registry.toggle_video)


# Health and debug
misc_router = APIRouter()


@misc_router.get("/")
def read_root():
    return {"message": "MeetClone API is running"}


@misc_router.get("/test")
def test_database(sessions: SessionManager = Depends(get_sessions), registry: MeetingRegistry = Depends(get_registry)):
    try:
        user_count = sessions.count_users()
    except Exception as e:
        logger.error("Database connection error: %s", e)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, f"Database connection failed: {str(e)[:80]}")
    return {
        "message": "Database connection successful",
        "userCount": user_count,
        "activeMeetings": len(registry.list_active()),
        "totalMeetings": len(registry.meetings),
    }


@misc_router.get("/debug/users")
def debug_users(sessions: SessionManager = Depends(get_sessions)):
    if config.is_production():
        raise errors.NotFoundError()
    users = sessions.list_users()
    return {"users": users, "count": len(users)}


app = create_app()

if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=config.LOG_LEVEL)
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
