from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from rudark.core.api_docs import error_responses
from rudark.core.config import settings
from rudark.core.deps import get_db
from rudark.core.rate_limit import LoginRateLimiter, client_key
from rudark.core.security import create_access_token, hash_password, verify_password
from rudark.core.security_current import get_current_admin, get_optional_admin
from rudark.models.admin_user import AdminUser
from rudark.schemas.auth import AdminOut, LoginIn, RegisterIn, TokenOut
from rudark.services.audit_service import log_audit_event

router = APIRouter(prefix="/auth", tags=["auth"])
TOKEN_RESPONSE = {
    200: {
        "description": "Access token",
        "content": {
            "application/json": {
                "example": {"access_token": "access-token", "token_type": "bearer"}
            }
        },
    }
}

login_rate_limiter = LoginRateLimiter(
    max_attempts=settings.auth_rate_limit_max_attempts,
    window_seconds=settings.auth_rate_limit_window_seconds,
    lock_seconds=settings.auth_rate_limit_lock_seconds,
)


def _admin_out(admin: AdminUser) -> AdminOut:
    return AdminOut(
        id=admin.id,
        email=admin.email,
        full_name=admin.full_name,
        role=admin.role,
        is_active=admin.is_active,
        created_at=admin.created_at,
    )


def _enforce_rate_limit(email: str, request: Request) -> str:
    key = f"{email.strip().lower()}|{client_key(request)}"
    retry_after = login_rate_limiter.check(key)
    if retry_after > 0:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many failed attempts. Try again later.",
            headers={"Retry-After": str(retry_after)},
        )
    return key


def _authenticate(db: Session, email: str, password: str) -> AdminUser:
    admin = db.execute(
        select(AdminUser).where(func.lower(AdminUser.email) == email.strip().lower())
    ).scalar_one_or_none()
    if not admin or not verify_password(password, admin.hashed_password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not admin.is_active:
        raise HTTPException(status_code=401, detail="Account is disabled")
    return admin


def _login(db: Session, request: Request, email: str, password: str) -> TokenOut:
    key = _enforce_rate_limit(email, request)
    try:
        admin = _authenticate(db, email, password)
    except HTTPException as exc:
        if exc.status_code == 401:
            login_rate_limiter.register_failure(key)
        raise
    login_rate_limiter.register_success(key)
    return TokenOut(access_token=create_access_token(admin.id, admin.role))


@router.post(
    "/register",
    response_model=AdminOut,
    status_code=201,
    summary="Register admin",
    description=(
        "The first call creates the shop owner without authentication. "
        "After that only an owner may add admins."
    ),
    responses=error_responses(400, 401, 403, 409, 422, 500),
)
def register(
    payload: RegisterIn,
    db: Session = Depends(get_db),
    actor: AdminUser | None = Depends(get_optional_admin),
):
    has_admins = db.execute(select(AdminUser.id).limit(1)).scalar_one_or_none() is not None
    role = payload.role
    if not has_admins:
        role = "owner"
    elif actor is None or actor.role != "owner":
        raise HTTPException(status_code=403, detail="Only an owner can register admins")

    exists = db.execute(
        select(AdminUser.id).where(func.lower(AdminUser.email) == payload.email.lower())
    ).scalar_one_or_none()
    if exists:
        raise HTTPException(status_code=409, detail="Email already registered")

    admin = AdminUser(
        email=payload.email.lower(),
        full_name=payload.full_name,
        hashed_password=hash_password(payload.password),
        role=role,
        is_active=True,
    )
    db.add(admin)
    db.flush()
    log_audit_event(
        db,
        actor_admin_id=actor.id if actor else admin.id,
        action="admin.register",
        target_type="admin_user",
        target_id=admin.id,
        metadata_json={"email": admin.email, "role": admin.role},
    )
    db.commit()
    db.refresh(admin)
    return _admin_out(admin)


@router.post(
    "/login",
    response_model=TokenOut,
    summary="Login with JSON",
    responses={**TOKEN_RESPONSE, **error_responses(401, 422, 429, 500)},
)
def login(payload: LoginIn, request: Request, db: Session = Depends(get_db)):
    return _login(db, request, payload.email, payload.password)


@router.post(
    "/token",
    response_model=TokenOut,
    summary="OAuth2 password token (Swagger Authorize)",
    description="Form-data login used by Swagger Authorize. Put the email in `username`.",
    responses={**TOKEN_RESPONSE, **error_responses(401, 422, 429, 500)},
)
def login_for_swagger(
    request: Request,
    db: Session = Depends(get_db),
    form_data: OAuth2PasswordRequestForm = Depends(),
):
    return _login(db, request, form_data.username, form_data.password)


@router.get(
    "/me",
    response_model=AdminOut,
    summary="Current admin",
    responses=error_responses(401, 500),
)
def me(admin: AdminUser = Depends(get_current_admin)):
    return _admin_out(admin)
