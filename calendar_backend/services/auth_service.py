# calendar_backend/services/auth_service.py
import logging

from calendar_backend.auth import IdentityVerifier, SessionTokenIssuer, VerifiedClaims
from calendar_backend.models import User
from calendar_backend.oauth import TokenSet
from calendar_backend.repositories import UserRepository

logger = logging.getLogger(__name__)


async def upsert_user(user_repo: UserRepository, claims: VerifiedClaims, token_set: TokenSet) -> User:
    """Create the user on first login, otherwise refresh profile and tokens."""
    user = await user_repo.get_user_by_google_id(claims.subject)
    if user is None:
        user = User(
            google_id=claims.subject,
            email=claims.email,
            name=claims.name,
            picture=claims.picture,
            access_token=token_set.access_token,
            refresh_token=token_set.refresh_token,
            expires_at=token_set.expires_at,
        )
        return await user_repo.create_user(user)

    user.access_token = token_set.access_token
    user.expires_at = token_set.expires_at
    # Google omits the refresh token when the user has already granted offline access
    if token_set.refresh_token:
        user.refresh_token = token_set.refresh_token
    user.name = claims.name
    user.picture = claims.picture
    return await user_repo.update_user(user)


class AuthService:
    def __init__(self, verifier: IdentityVerifier, session_issuer: SessionTokenIssuer):
        self.verifier = verifier
        self.session_issuer = session_issuer

    async def handle_google_callback(self, user_repo: UserRepository, code: str) -> str:
        """Verify the authorization code, store the user and return a session credential."""
        claims, token_set = await self.verifier.verify_code(code)
        user = await upsert_user(user_repo, claims, token_set)
        logger.info("User logged in", extra={"user_id": str(user.id)})
        return self.session_issuer.issue(claims.email)
