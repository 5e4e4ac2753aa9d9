"""
User store - the only durable state owned by the gateway.

Writes are single-row upserts keyed by the GitHub user id; concurrent logins
for the same identity rely on the database's unique constraint.
"""

import logging
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gitconnect.models import TokenPayload, User
from gitconnect.utils import utc_now

logger = logging.getLogger(__name__)


class TokenDecryptionError(Exception):
    """Stored upstream token could not be decrypted"""

    pass


class TokenCipher:
    """
    Encrypts upstream tokens at rest with Fernet.

    Without a key the cipher is an identity transform, which keeps local
    development usable; production deployments set TOKEN_ENCRYPTION_KEY.
    """

    def __init__(self, key: Optional[str] = None):
        self._fernet = Fernet(key.encode()) if key else None

    @property
    def enabled(self) -> bool:
        return self._fernet is not None

    def encrypt(self, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        if not self._fernet:
            return value
        return self._fernet.encrypt(value.encode()).decode()

    def decrypt(self, value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        if not self._fernet:
            return value
        try:
            return self._fernet.decrypt(value.encode()).decode()
        except InvalidToken as e:
            raise TokenDecryptionError("Stored token could not be decrypted") from e


class UserStore:
    def __init__(self, db: Session, cipher: TokenCipher):
        self.db = db
        self.cipher = cipher

    def get(self, user_id: str) -> Optional[User]:
        return self.db.get(User, user_id)

    def get_by_github_id(self, github_id: str) -> Optional[User]:
        return self.db.query(User).filter(User.github_id == github_id).first()

    def upsert_from_github(
        self,
        github_user: Dict[str, Any],
        tokens: TokenPayload,
        installation_id: Optional[int] = None,
    ) -> User:
        """
        Create or update the user row from a GitHub profile and fresh tokens.

        Args:
            github_user: Raw ``GET /user`` payload
            tokens: Token endpoint response for this login
            installation_id: Optional GitHub App installation for the user

        Returns:
            The persisted User
        """
        if not github_user or "id" not in github_user or "login" not in github_user:
            raise ValueError("Invalid GitHub user information received")

        github_id = str(github_user["id"])
        user = self.get_by_github_id(github_id)
        if user is None:
            user = User(github_id=github_id)
            self.db.add(user)

        user.login = github_user["login"]
        user.name = github_user.get("name")
        user.avatar_url = github_user.get("avatar_url")
        user.bio = github_user.get("bio")
        user.email = github_user.get("email")
        user.profile_url = github_user.get("html_url")
        user.followers_count = github_user.get("followers")
        user.following_count = github_user.get("following")
        user.source = "github"
        user.last_login = utc_now()
        if installation_id is not None:
            user.installation_id = installation_id
        self._apply_tokens(user, tokens)

        try:
            self.db.commit()
        except IntegrityError:
            # Lost a race with a concurrent login for the same identity.
            self.db.rollback()
            existing = self.get_by_github_id(github_id)
            if existing is None:
                raise
            self._apply_tokens(existing, tokens)
            self.db.commit()
            user = existing

        self.db.refresh(user)
        logger.info(f"Upserted user {user.login} (github_id={github_id})")
        return user

    def update_tokens(self, user: User, tokens: TokenPayload) -> User:
        """Persist a refreshed credential; a missing refresh token keeps the old one."""
        self._apply_tokens(user, tokens)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(user)
        return user

    def _apply_tokens(self, user: User, tokens: TokenPayload) -> None:
        user.access_token = self.cipher.encrypt(tokens.access_token)
        if tokens.refresh_token:
            user.refresh_token = self.cipher.encrypt(tokens.refresh_token)
            user.refresh_token_expires_at = tokens.refresh_token_expires_at
        user.token_type = tokens.token_type
        user.scope = tokens.scope
        user.token_expires_at = tokens.token_expires_at
        user.token_updated_at = utc_now()
