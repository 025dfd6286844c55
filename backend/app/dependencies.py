"""Shared FastAPI dependencies."""

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from app.config import get_settings
from app.database import get_db
from app.models import User


def get_current_user(
    x_user_id: int = Header(..., alias="X-User-Id"),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the calling user from the gateway-provided header."""
    user = db.query(User).filter(User.id == x_user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def require_admin(x_admin_token: str = Header("", alias="X-Admin-Token")) -> None:
    admin_token = get_settings().admin_token
    if not admin_token or x_admin_token != admin_token:
        raise HTTPException(status_code=403, detail="Admin token required")
