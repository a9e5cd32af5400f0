from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from securechat.database import get_db
from securechat.redis.client import mirror_status

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(db: Session = Depends(get_db)) -> dict:
    mirror = await mirror_status()
    try:
        db.execute(text("SELECT 1"))
        return {"status": "healthy", "database": "connected", "mirror": mirror}
    except Exception:
        return {"status": "unhealthy", "database": "disconnected", "mirror": mirror}
