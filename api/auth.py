"""Bearer tokens for coach clients.

User and gym administration live outside this service; all the session API
needs is a signed principal naming the coach, their role and the one gym whose
sessions they drive. Tokens are compact HS256 JWTs signed with JWT_SECRET.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from api.observability import bind_gym
from core.config import get_settings


bearer_scheme = HTTPBearer(auto_error=False)

COACH_ROLES = frozenset({"coach", "gym_admin", "admin"})
_HEADER = {"alg": "HS256", "typ": "JWT"}


def _reject(code: str = "INVALID_TOKEN") -> HTTPException:
    return HTTPException(status_code=401, detail={"code": code})


@dataclass(frozen=True)
class CoachPrincipal:
    user_id: str
    role: str
    gym_slug: str
    exp: int

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> "CoachPrincipal":
        return cls(
            user_id=str(claims["sub"]),
            role=str(claims["role"]),
            gym_slug=str(claims["gym_slug"]),
            exp=int(claims.get("exp") or 0),
        )

    def claims(self) -> dict[str, Any]:
        return {"sub": self.user_id, "role": self.role, "gym_slug": self.gym_slug, "exp": self.exp}

    @property
    def expired(self) -> bool:
        return self.exp <= int(time.time())


def _encode_segment(obj: dict[str, Any]) -> str:
    raw = json.dumps(obj, separators=(",", ":"), sort_keys=True).encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _decode_segment(segment: str) -> dict[str, Any]:
    padded = segment + "=" * (-len(segment) % 4)
    value = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
    if not isinstance(value, dict):
        raise ValueError("token segment is not an object")
    return value


def _signature(signing_input: str) -> str:
    secret = get_settings().jwt_secret_key.encode("utf-8")
    digest = hmac.new(secret, signing_input.encode("ascii"), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def issue_access_token(*, user_id: str, role: str, gym_slug: str, expires_in_seconds: Optional[int] = None) -> str:
    if expires_in_seconds is None:
        expires_in_seconds = get_settings().jwt_expire_minutes * 60
    principal = CoachPrincipal(user_id=str(user_id), role=str(role), gym_slug=str(gym_slug), exp=int(time.time()) + int(expires_in_seconds))
    signing_input = f"{_encode_segment(_HEADER)}.{_encode_segment(principal.claims())}"
    return f"{signing_input}.{_signature(signing_input)}"


def decode_access_token(token: str) -> CoachPrincipal:
    parts = token.split(".")
    if len(parts) != 3:
        raise _reject()
    header_b64, payload_b64, signature = parts

    try:
        expected = _signature(f"{header_b64}.{payload_b64}")
        if not hmac.compare_digest(signature.encode("utf-8"), expected.encode("ascii")):
            raise _reject()
        if _decode_segment(header_b64).get("alg") != _HEADER["alg"]:
            raise _reject()
        principal = CoachPrincipal.from_claims(_decode_segment(payload_b64))
    except (ValueError, KeyError, TypeError) as exc:
        raise _reject() from exc

    if principal.expired:
        raise _reject("TOKEN_EXPIRED")
    return principal


def get_current_principal(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> CoachPrincipal:
    if credentials is None or not credentials.credentials:
        raise _reject("AUTH_REQUIRED")
    return decode_access_token(credentials.credentials)


async def require_coach(principal: CoachPrincipal = Depends(get_current_principal)) -> CoachPrincipal:
    """Gate for coach endpoints; binds the coach's gym to the request log context."""
    if principal.role.lower() not in COACH_ROLES:
        raise HTTPException(
            status_code=403,
            detail={"code": "FORBIDDEN_ROLE", "required_roles": sorted(COACH_ROLES), "role": principal.role},
        )
    bind_gym(principal.gym_slug)
    return principal
