# calendar_backend/auth.py
"""Identity token verification, session credentials and the request gate."""

import hmac
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Optional

from fastapi import Cookie, Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from calendar_backend.config import GOOGLE_ISSUERS, Settings
from calendar_backend.exceptions import ClaimsError, Unauthorized, VerificationError
from calendar_backend.jwks import JWKSCache
from calendar_backend.oauth import GoogleOAuthClient, TokenSet

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
SESSION_COOKIE = "token"
STATE_COOKIE = "oauthstate"
SESSION_TTL = timedelta(hours=72)
STATE_TTL = timedelta(minutes=10)

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class VerifiedClaims:
    subject: str
    email: str
    name: str = ""
    picture: str = ""


@dataclass(frozen=True)
class UserInfo:
    """Identity of the caller, as established by the session credential."""

    email: str


class IdentityVerifier:
    """Turns an authorization code into verified identity claims."""

    def __init__(self, oauth_client: GoogleOAuthClient, jwks_cache: JWKSCache, client_id: str, leeway: int = 10):
        self.oauth_client = oauth_client
        self.jwks_cache = jwks_cache
        self.client_id = client_id
        self.leeway = leeway

    async def verify_code(self, code: str) -> tuple[VerifiedClaims, TokenSet]:
        token_set = await self.oauth_client.exchange_code(code)
        if not token_set.id_token:
            raise VerificationError("no id_token field in oauth2 token")
        claims = await self.verify_id_token(token_set.id_token, access_token=token_set.access_token)
        return self.extract_claims(claims), token_set

    async def verify_id_token(self, id_token: str, access_token: Optional[str] = None) -> dict[str, Any]:
        try:
            kid = jwt.get_unverified_header(id_token).get("kid")
            if not kid:
                raise VerificationError("identity token header missing 'kid'")
            signing_key = await self.jwks_cache.get_signing_key(kid)
            return jwt.decode(
                id_token,
                signing_key,
                algorithms=["RS256"],
                audience=self.client_id,
                issuer=GOOGLE_ISSUERS,
                access_token=access_token,
                options={"require_exp": True, "require_iat": True, "leeway": self.leeway},
            )
        except VerificationError:
            raise
        except JWTError as e:
            raise VerificationError(f"failed to verify ID token: {e}") from e
        except Exception as e:
            logger.error(f"Unexpected error during ID token verification: {e}", exc_info=True)
            raise VerificationError(f"failed to verify ID token: {e}") from e

    @staticmethod
    def extract_claims(claims: dict[str, Any]) -> VerifiedClaims:
        subject = claims.get("sub")
        email = claims.get("email")
        if not subject or not email:
            raise ClaimsError(f"userinfo missing required fields: sub={subject!r} email={email!r}")
        return VerifiedClaims(
            subject=subject,
            email=email,
            name=claims.get("name") or "",
            picture=claims.get("picture") or "",
        )


class SessionTokenIssuer:
    """Mints and checks the HS256 session credential carried in the ``token`` cookie."""

    def __init__(self, secret: str, ttl: timedelta = SESSION_TTL, now: Callable[[], float] = time.time):
        if not secret:
            raise ValueError("secret must not be empty")
        self._secret = secret
        self.ttl = ttl
        self._now = now

    def issue(self, email: str) -> str:
        claims = {"email": email, "exp": int(self._now() + self.ttl.total_seconds())}
        return jwt.encode(claims, self._secret, algorithm=ALGORITHM)

    def verify(self, token: str) -> UserInfo:
        if not token:
            raise Unauthorized("missing session token")
        try:
            # jose checks exp against the wall clock, so compare against our own clock too
            claims = jwt.decode(token, self._secret, algorithms=[ALGORITHM], options={"require_exp": True})
        except JWTError as e:
            raise Unauthorized(f"invalid session token: {e}") from e
        if int(claims["exp"]) <= int(self._now()):
            raise Unauthorized("session token expired")
        email = claims.get("email")
        if not isinstance(email, str) or not email:
            raise Unauthorized("session token missing email claim")
        return UserInfo(email=email)


class StateSigner:
    """Short-lived anti-forgery values for the OAuth redirect."""

    def __init__(self, secret: str, ttl: timedelta = STATE_TTL):
        self._secret = secret
        self.ttl = ttl

    def new_state(self) -> str:
        claims = {"nonce": uuid.uuid4().hex, "exp": int(time.time() + self.ttl.total_seconds())}
        return jwt.encode(claims, self._secret, algorithm=ALGORITHM)

    def is_valid(self, cookie_value: Optional[str], received: Optional[str]) -> bool:
        if not cookie_value or not received:
            return False
        if not hmac.compare_digest(cookie_value, received):
            return False
        try:
            jwt.decode(received, self._secret, algorithms=[ALGORITHM], options={"require_exp": True})
        except JWTError:
            return False
        return True


def build_session_issuer(settings: Settings) -> SessionTokenIssuer:
    return SessionTokenIssuer(settings.jwt_secret)


def get_session_issuer(request: Request) -> SessionTokenIssuer:
    return request.app.state.session_issuer


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    token: Optional[str] = Cookie(default=None),
    issuer: SessionTokenIssuer = Depends(get_session_issuer),
) -> UserInfo:
    """
    Request gate for protected routes.

    The Authorization header wins over the cookie. Anything short of a valid,
    unexpired credential carrying an email is rejected with ``Unauthorized``.
    """
    candidate = credentials.credentials if credentials else token
    if not candidate:
        raise Unauthorized("no authentication token")
    try:
        return issuer.verify(candidate)
    except Unauthorized as e:
        logger.info(f"Authentication failed: {e}")
        raise
