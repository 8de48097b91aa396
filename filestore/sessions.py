import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from filestore.errors import Expired, NotFound
from filestore.models import RefreshCredential
from filestore.repository import RefreshTokenRepository

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_LIFETIME = timedelta(days=30)
TOKEN_BYTES = 48


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SessionCredentialManager:
    """Issues, checks and revokes refresh credentials.

    Expired credentials are only purged when someone presents them; there is
    no background sweep. Several live credentials per user are allowed, one
    per login.
    """

    def __init__(
        self,
        repository: RefreshTokenRepository,
        *,
        lifetime: timedelta = DEFAULT_REFRESH_LIFETIME,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.lifetime = lifetime
        self.clock = clock

    def create_refresh_credential(self, username: str) -> RefreshCredential:
        return self.repository.create(
            token=secrets.token_urlsafe(TOKEN_BYTES),
            username=username,
            expires_at=self.clock() + self.lifetime,
        )

    def find_by_token(self, token: str) -> RefreshCredential | None:
        return self.repository.get_by_token(token)

    def verify_expiration(self, credential: RefreshCredential) -> RefreshCredential:
        if credential.expires_at <= self.clock():
            self.repository.delete(credential.token_id)
            logger.warning(f"Refresh token for {credential.username} expired, removed")
            raise Expired()
        return credential

    def validate(self, token: str) -> RefreshCredential:
        credential = self.find_by_token(token)
        if credential is None:
            raise NotFound("refresh token not found")
        return self.verify_expiration(credential)

    def rotate(self, credential: RefreshCredential) -> RefreshCredential:
        """Replace a just-validated credential with a fresh one."""
        self.repository.delete(credential.token_id)
        return self.create_refresh_credential(credential.username)

    def delete_by_username(self, username: str) -> int:
        removed = self.repository.delete_by_username(username)
        logger.info(f"Revoked {removed} refresh tokens for {username}")
        return removed
