from dataclasses import dataclass, field

from jose import JWTError, jwt
from starlette.requests import Request

from opai.core.config import get_settings


ANONYMOUS_SUBJECT = "anonymous"


@dataclass
class AuthUser:
    sub: str
    roles: list[str] = field(default_factory=list)
    tenant_id: str | None = None

    @property
    def is_anonymous(self) -> bool:
        return self.sub == ANONYMOUS_SUBJECT


def _bearer_token(request: Request) -> str | None:
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def decode_token(token: str) -> AuthUser:
    """Decode a bearer token; invalid tokens yield an anonymous guest."""
    settings = get_settings()
    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return AuthUser(sub=ANONYMOUS_SUBJECT, roles=["guest"])

    roles = claims.get("roles")
    tenant_id = claims.get("tenant_id")
    return AuthUser(
        sub=str(claims.get("sub") or ANONYMOUS_SUBJECT),
        roles=[str(role) for role in roles] if isinstance(roles, list) else [],
        tenant_id=str(tenant_id) if tenant_id else None,
    )


async def get_current_user(request: Request) -> AuthUser:
    token = _bearer_token(request)
    if token is None:
        return AuthUser(sub=ANONYMOUS_SUBJECT, roles=["guest"])
    return decode_token(token)
