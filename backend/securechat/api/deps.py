from fastapi import Depends
from fastapi.security import APIKeyCookie
from sqlalchemy.orm import Session

from securechat.config import settings
from securechat.core.exceptions import AuthError
from securechat.database import get_db
from securechat.models.user import User
from securechat.services import auth_service

session_cookie = APIKeyCookie(name=settings.SESSION_COOKIE_NAME, auto_error=False)


async def get_optional_user(
    token: str | None = Depends(session_cookie),
    db: Session = Depends(get_db),
) -> User | None:
    return auth_service.get_user_from_session_token(token, db)


async def get_current_user(user: User | None = Depends(get_optional_user)) -> User:
    if user is None:
        raise AuthError("Not authenticated")
    return user
