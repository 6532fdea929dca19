from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.orm import Session

from rudark.core.deps import get_db
from rudark.core.security import TokenValidationError, decode_access_token
from rudark.models.admin_user import AdminUser

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token", auto_error=False)


def _admin_from_token(db: Session, token: str) -> AdminUser:
    try:
        payload = decode_access_token(token)
    except TokenValidationError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    admin = db.execute(
        select(AdminUser).where(AdminUser.id == payload["sub"])
    ).scalar_one_or_none()
    if not admin or not admin.is_active:
        raise HTTPException(status_code=401, detail="Admin not found")
    return admin


def get_current_admin(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> AdminUser:
    return _admin_from_token(db, token)


def get_optional_admin(
    token: str | None = Depends(optional_oauth2_scheme),
    db: Session = Depends(get_db),
) -> AdminUser | None:
    if not token:
        return None
    return _admin_from_token(db, token)
