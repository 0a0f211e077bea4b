from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

import jwt

from ledgerbook.config import settings
from ledgerbook.database import utcnow
from ledgerbook.services.users import UserIdentity


class TokenError(ValueError):
    pass


@dataclass(frozen=True)
class SessionCredential:
    token: str
    subject: str
    email: str
    status: str
    roles: tuple[str, ...]
    role: str
    expires_at: datetime


@dataclass(frozen=True)
class SessionClaims:
    subject: str
    email: str
    status: str
    roles: tuple[str, ...]
    role: str


class TokenIssuer:
    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        expire_minutes: int = 60,
        default_role: str = "managers",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._secret = secret
        self._algorithm = algorithm
        self._expire_minutes = expire_minutes
        self._default_role = default_role
        self._clock = clock

    def issue(self, identity: UserIdentity) -> SessionCredential:
        if not self._secret:
            raise TokenError("JWT secret is not configured")
        now = self._clock()
        expires_at = now + timedelta(minutes=self._expire_minutes)
        roles = tuple(identity.roles)
        role = identity.primary_role or self._default_role
        payload = {
            "sub": identity.id,
            "email": identity.email,
            "status": identity.status,
            "roles": list(roles),
            "role": role,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        token = jwt.encode(payload, self._secret, algorithm=self._algorithm)
        return SessionCredential(
            token=token,
            subject=identity.id,
            email=identity.email,
            status=identity.status,
            roles=roles,
            role=role,
            expires_at=expires_at,
        )

    def decode(self, token: str) -> SessionClaims:
        if not token:
            raise TokenError("Token is missing")
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except jwt.ExpiredSignatureError as exc:
            raise TokenError("Token has expired") from exc
        except jwt.InvalidTokenError as exc:
            raise TokenError("Invalid token") from exc
        subject = payload.get("sub")
        email = payload.get("email")
        if not subject or not email:
            raise TokenError("Token subject is missing")
        roles = tuple(payload.get("roles") or ())
        return SessionClaims(
            subject=str(subject),
            email=email,
            status=payload.get("status") or "active",
            roles=roles,
            role=payload.get("role") or (roles[0] if roles else self._default_role),
        )


token_issuer = TokenIssuer(
    secret=settings.jwt_secret,
    algorithm=settings.jwt_algorithm,
    expire_minutes=settings.jwt_expire_minutes,
    default_role=settings.default_role,
)
