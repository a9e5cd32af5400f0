from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from securechat.api.deps import get_current_user
from securechat.database import get_db
from securechat.models.user import User
from securechat.schemas.user import RosterEntry
from securechat.services import chat_service

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/online", response_model=list[RosterEntry])
async def list_online_users(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[RosterEntry]:
    """The same roster the chat socket broadcasts, for clients that poll."""
    return [RosterEntry.model_validate(u) for u in chat_service.get_online_users(db)]
