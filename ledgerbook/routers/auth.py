from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from ledgerbook.config import settings
from ledgerbook.routers.deps import (
    get_current_claims,
    get_otp_service,
    get_token_issuer,
    get_user_store,
)
from ledgerbook.schemas.users import (
    AuthResponse,
    ChangePasswordRequest,
    CheckEmailResponse,
    CreatePhoneUserRequest,
    CreateUserRequest,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    UserPayload,
    clean_email,
)
from ledgerbook.services.otp import OtpIdentity, OtpService
from ledgerbook.services.phone import InvalidPhone, normalize_phone
from ledgerbook.services.tokens import SessionClaims, TokenError, TokenIssuer
from ledgerbook.services.users import (
    EMAIL,
    PHONE,
    IdentityConflict,
    ProfileHints,
    UserIdentity,
    UserStore,
)

router = APIRouter(prefix="/auth", tags=["auth"])


def user_payload(identity: UserIdentity, default_role: str) -> UserPayload:
    return UserPayload(
        id=identity.id,
        email=identity.email,
        status=identity.status,
        roles=list(identity.roles),
        role=identity.primary_role or default_role,
        phone=identity.phone,
        created_at=identity.created_at,
        last_login_at=identity.last_login_at,
    )


def _authenticated(
    identity: UserIdentity, issuer: TokenIssuer, users: UserStore
) -> AuthResponse:
    try:
        credential = issuer.issue(identity)
    except TokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc
    return AuthResponse(
        token=credential.token, user=user_payload(identity, users.default_role)
    )


def _require_verified(otp: OtpService, identity: OtpIdentity) -> None:
    if not settings.require_verified_otp:
        return
    window = timedelta(minutes=settings.otp_verified_window_minutes)
    if not otp.was_recently_verified(identity, window):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="OTP verification required",
        )


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(
    payload: RegisterRequest,
    users: UserStore = Depends(get_user_store),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> AuthResponse:
    phone = None
    if payload.phone:
        try:
            phone = normalize_phone(payload.phone, settings.default_country_code)
        except InvalidPhone as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=str(exc),
            ) from exc
    try:
        resolution = users.register(
            payload.email,
            payload.password,
            ProfileHints(payload.first_name, payload.last_name, phone),
        )
    except IdentityConflict as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    return _authenticated(resolution.identity, issuer, users)


@router.post("/login", response_model=AuthResponse)
def login(
    payload: LoginRequest,
    users: UserStore = Depends(get_user_store),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> AuthResponse:
    identity = users.authenticate(payload.email, payload.password)
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )
    return _authenticated(identity, issuer, users)


@router.post("/logout", response_model=MessageResponse, response_model_exclude_none=True)
def logout(_: SessionClaims = Depends(get_current_claims)) -> MessageResponse:
    # Credentials are stateless; the client discards its token.
    return MessageResponse()


@router.put("/change-password", response_model=MessageResponse)
def change_password(
    payload: ChangePasswordRequest,
    claims: SessionClaims = Depends(get_current_claims),
    users: UserStore = Depends(get_user_store),
) -> MessageResponse:
    try:
        changed = users.change_password(
            claims.subject, payload.current_password, payload.new_password
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    if not changed:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Current password is incorrect",
        )
    return MessageResponse(message="Password updated successfully")


@router.get("/check-email", response_model=CheckEmailResponse)
def check_email(
    email: str = Query(min_length=3, max_length=255),
    users: UserStore = Depends(get_user_store),
) -> CheckEmailResponse:
    try:
        cleaned = clean_email(email)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    return CheckEmailResponse(exists=users.email_exists(cleaned))


@router.post("/create-user", response_model=AuthResponse)
def create_user(
    payload: CreateUserRequest,
    response: Response,
    otp: OtpService = Depends(get_otp_service),
    users: UserStore = Depends(get_user_store),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> AuthResponse:
    _require_verified(otp, OtpIdentity.for_email(payload.email))
    resolution = users.resolve_or_create(EMAIL, payload.email)
    if resolution.created:
        response.status_code = status.HTTP_201_CREATED
    return _authenticated(resolution.identity, issuer, users)


@router.post("/create-user-phone", response_model=AuthResponse)
def create_user_phone(
    payload: CreatePhoneUserRequest,
    response: Response,
    otp: OtpService = Depends(get_otp_service),
    users: UserStore = Depends(get_user_store),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> AuthResponse:
    try:
        identity = otp.phone_identity(payload.phone)
    except InvalidPhone as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    _require_verified(otp, identity)
    try:
        resolution = users.resolve_or_create(PHONE, identity.value)
    except IdentityConflict as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    if resolution.created:
        response.status_code = status.HTTP_201_CREATED
    return _authenticated(resolution.identity, issuer, users)
