import logging

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.orm import Session

from securechat.api.deps import get_optional_user
from securechat.config import settings
from securechat.core.exceptions import PersistenceError
from securechat.database import get_db
from securechat.models.user import User
from securechat.redis import mirror
from securechat.schemas.user import AuthResponse, SessionStatus, SessionUser, UserCreate, UserLogin
from securechat.services import auth_service, chat_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])


def _set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=token,
        max_age=settings.SESSION_EXPIRE_MINUTES * 60,
        httponly=True,
        secure=settings.SESSION_COOKIE_SECURE,
        samesite="lax",
    )


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(user_in: UserCreate, response: Response, db: Session = Depends(get_db)) -> AuthResponse:
    user = chat_service.create_user(db, user_in.username, user_in.email, user_in.password)
    await mirror.mirror_user(user)

    # Registration logs the new user straight in
    _set_session_cookie(response, auth_service.create_session(db, user))
    logger.info("New user registered: %s", user.username)
    return AuthResponse(username=user.username)


@router.post("/login", response_model=AuthResponse)
async def login(credentials: UserLogin, response: Response, db: Session = Depends(get_db)) -> AuthResponse:
    user = chat_service.authenticate_user(db, credentials.username, credentials.password)

    _set_session_cookie(response, auth_service.create_session(db, user))
    logger.info("User logged in: %s", user.username)
    return AuthResponse(username=user.username)


@router.get("/session", response_model=SessionStatus)
async def get_session(user: User | None = Depends(get_optional_user)) -> SessionStatus:
    if user is None:
        return SessionStatus(authenticated=False)
    return SessionStatus(authenticated=True, user=SessionUser.model_validate(user))


@router.post("/logout")
async def logout(request: Request, response: Response, db: Session = Depends(get_db)) -> dict:
    user = auth_service.destroy_session(request.cookies.get(settings.SESSION_COOKIE_NAME), db)
    if user is not None:
        try:
            chat_service.update_user_online_status(db, user.id, False)
        except PersistenceError:
            logger.warning("Could not mark user %s offline on logout", user.id)
        await mirror.mirror_presence(user.id, False)
        logger.info("User logged out: %s", user.username)

    response.delete_cookie(settings.SESSION_COOKIE_NAME)
    return {"success": True}
