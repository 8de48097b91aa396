import logging
from pathlib import Path

from filestore.errors import InvalidInput, Unauthenticated
from filestore.models import User
from filestore.repository import UserRepository
from filestore.security import hash_password, verify_password
from filestore.sessions import SessionCredentialManager
from filestore.storage import LocalOwnerStorage

logger = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes of a password.
BCRYPT_MAX_PASSWORD_BYTES = 72


class AccountService:
    def __init__(
        self,
        users: UserRepository,
        storage: LocalOwnerStorage,
        sessions: SessionCredentialManager,
        *,
        username_min_length: int = 3,
        username_max_length: int = 50,
        password_min_length: int = 6,
        bcrypt_rounds: int = 12,
    ):
        self.users = users
        self.storage = storage
        self.sessions = sessions
        self.username_min_length = username_min_length
        self.username_max_length = username_max_length
        self.password_min_length = password_min_length
        self.bcrypt_rounds = bcrypt_rounds

    def _check_password(self, password: str | None, label: str = "password") -> str:
        if password is None or len(password) < self.password_min_length:
            raise InvalidInput(f"{label} must be at least {self.password_min_length} characters long")
        if len(password.encode("utf-8")) > BCRYPT_MAX_PASSWORD_BYTES:
            raise InvalidInput(f"{label} must be at most {BCRYPT_MAX_PASSWORD_BYTES} bytes long")
        return password

    def register(self, username: str, password: str) -> User:
        username = (username or "").strip()
        if not username:
            raise InvalidInput("username is required")
        if not self.username_min_length <= len(username) <= self.username_max_length:
            raise InvalidInput(
                f"username must be between {self.username_min_length} "
                f"and {self.username_max_length} characters"
            )
        self._check_password(password)

        user = self.users.create(
            username=username,
            password_hash=hash_password(password, rounds=self.bcrypt_rounds),
            roles=["USER"],
        )
        logger.info(f"Registered user {user.username} ({user.user_id})")
        return user

    def authenticate(self, username: str, password: str) -> User:
        user = self.users.get_by_username(username)
        if user is None or not verify_password(password, user.password_hash):
            raise Unauthenticated("invalid credentials")
        return user

    def change_password(self, user: User, current_password: str, new_password: str) -> None:
        if not verify_password(current_password, user.password_hash):
            raise InvalidInput("incorrect current password")
        self._check_password(new_password, label="new password")
        self.users.update_password_hash(user.user_id, hash_password(new_password, rounds=self.bcrypt_rounds))
        logger.info(f"Password changed for {user.username}")

    def delete_account(self, user: User) -> list[Path]:
        failures = self.storage.delete_all_for_owner(user.user_id)
        self.sessions.delete_by_username(user.username)
        self.users.delete(user.user_id)
        logger.info(f"Deleted account {user.username} ({user.user_id})")
        return failures
