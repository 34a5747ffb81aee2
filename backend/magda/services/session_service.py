"""
Session store - the single authenticated user of this installation.

The profile is kept as one encrypted JSON blob under ``magda_user_data``.

State machine::

    LOADING ──restore()──► AUTHENTICATED | UNAUTHENTICATED
    UNAUTHENTICATED ──register()/login()/unlock_with_biometrics()──► AUTHENTICATED
    AUTHENTICATED ──logout()──► UNAUTHENTICATED

``login`` delegates to a ``CredentialVerifier``.  The default
``EmailDerivedVerifier`` reproduces the mobile app's stub: the user id is
derived from the email and no password is checked.  Deployments that need
real authentication plug in their own verifier.
"""

from __future__ import annotations

import enum
import logging
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from magda.config import Settings
from magda.db.secure_store import OPENAI_API_KEY_NAME, USER_DATA_KEY, BaseSecureStore
from magda.exceptions import AuthenticationError, DecryptionError, StorageUnavailable, ValidationError
from magda.models.base import new_id, utcnow, validate_input
from magda.models.user import RegisterInput, User, UserUpdate
from magda.security.cipher import CipherCodec
from magda.utils.validation import is_valid_email

logger = logging.getLogger(__name__)


class SessionState(str, enum.Enum):
    LOADING = "loading"
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"


def utf16_code_unit_sum(text: str) -> int:
    """Sum of UTF-16 code units, so ids match the ones the mobile app derived."""
    encoded = text.encode("utf-16-le")
    return sum(int.from_bytes(encoded[i:i + 2], "little") for i in range(0, len(encoded), 2))


class CredentialVerifier:
    """Interface for credential checks behind ``SessionStore.login``."""

    async def verify(self, email: str, password: str, provider: str) -> User:  # pragma: no cover - abstract
        raise NotImplementedError


class EmailDerivedVerifier(CredentialVerifier):
    """Stub verifier: derives a stable user from the email, ignores the password."""

    async def verify(self, email: str, password: str, provider: str) -> User:
        email = (email or "").strip().lower()
        if not is_valid_email(email):
            raise AuthenticationError("Please enter a valid email address")
        email_hash = utf16_code_unit_sum(email)
        return User(
            id=f"user-{email_hash}",
            email=email,
            first_name=email.split("@")[0],
            last_name="User",
            provider=provider,
            created_at=utcnow(),
            biometric_enabled=False,
        )


class SessionStore:
    def __init__(
        self,
        store: BaseSecureStore,
        codec: CipherCodec,
        verifier: Optional[CredentialVerifier] = None,
    ):
        self._store = store
        self._codec = codec
        self._verifier = verifier or EmailDerivedVerifier()
        self.state = SessionState.LOADING
        self.user: Optional[User] = None
        self.error: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.state == SessionState.AUTHENTICATED

    async def restore(self) -> Optional[User]:
        """Load the stored profile; any failure degrades to "no session"."""
        self.state = SessionState.LOADING
        try:
            user = await self._read_stored_user()
        except StorageUnavailable as exc:
            logger.error("Could not read stored user: %s", exc)
            user = None
        except (DecryptionError, PydanticValidationError) as exc:
            logger.warning("Could not parse stored user data, clearing it: %s", exc)
            await self._clear_stored_user()
            user = None

        if user is None:
            logger.info("No stored user found")
            self._set_unauthenticated()
            return None

        self._set_authenticated(user)
        logger.info("Restored session for %s", user.id)
        return user

    async def register(self, data: RegisterInput | dict) -> User:
        register_input = validate_input(RegisterInput, data)
        user = User(
            id=new_id("user"),
            first_name=register_input.first_name,
            last_name=register_input.last_name,
            email=register_input.email,
            provider=register_input.provider,
            biometric_enabled=False,
            created_at=utcnow(),
        )
        await self._persist_or_fail(user, "Registration failed")
        self._set_authenticated(user)
        logger.info("Registered user %s", user.id)
        return user

    async def login(self, email: str, password: str, provider: str = "email") -> User:
        try:
            user = await self._verifier.verify(email, password, provider)
        except AuthenticationError as exc:
            self.error = str(exc) or "Authentication failed. Please try again"
            raise
        await self._persist_or_fail(user, "Login failed")
        self._set_authenticated(user)
        logger.info("Logged in user %s via %s", user.id, provider)
        return user

    async def unlock_with_biometrics(self) -> User:
        """Resume the stored session after the device's biometric prompt passed."""
        try:
            user = await self._read_stored_user()
        except (DecryptionError, PydanticValidationError) as exc:
            self.error = "Biometric login failed"
            raise AuthenticationError("Stored profile could not be read") from exc

        if user is None:
            self.error = "No stored user found"
            raise AuthenticationError(self.error)
        if not user.biometric_enabled:
            self.error = "Biometric authentication not enabled"
            raise AuthenticationError(self.error)

        self._set_authenticated(user)
        return user

    async def update_user(self, changes: UserUpdate | dict) -> User:
        if self.user is None or not self.is_authenticated:
            raise AuthenticationError("No active session")
        update = validate_input(UserUpdate, changes)
        user = self.user.model_copy(update=update.model_dump(exclude_unset=True, exclude_none=True))
        await self._persist_or_fail(user, "Failed to update user")
        self.user = user
        return user

    async def logout(self) -> None:
        try:
            await self._store.delete(USER_DATA_KEY)
        except StorageUnavailable as exc:
            logger.error("Logout could not clear stored user: %s", exc)
            raise
        finally:
            self._set_unauthenticated()
        logger.info("Logged out")

    # ------------------------------------------------------------------

    async def _read_stored_user(self) -> Optional[User]:
        blob = await self._store.get(USER_DATA_KEY)
        if not blob:
            return None
        return User.model_validate(await self._codec.decrypt_json(blob))

    async def _persist_or_fail(self, user: User, message: str) -> None:
        try:
            blob = await self._codec.encrypt_json(user.to_storage())
            await self._store.set(USER_DATA_KEY, blob)
        except StorageUnavailable:
            self.error = message
            raise

    async def _clear_stored_user(self) -> None:
        try:
            await self._store.delete(USER_DATA_KEY)
        except StorageUnavailable as exc:
            logger.error("Could not clear corrupt user data: %s", exc)

    def _set_authenticated(self, user: User) -> None:
        self.user = user
        self.state = SessionState.AUTHENTICATED
        self.error = None

    def _set_unauthenticated(self) -> None:
        self.user = None
        self.state = SessionState.UNAUTHENTICATED


class ApiCredentialStore:
    """Encrypted storage for the assistant's API key."""

    def __init__(self, store: BaseSecureStore, codec: CipherCodec):
        self._store = store
        self._codec = codec

    async def get_api_key(self) -> Optional[str]:
        blob = await self._store.get(OPENAI_API_KEY_NAME)
        if not blob:
            return None
        try:
            return await self._codec.decrypt(blob)
        except DecryptionError as exc:
            logger.error("API key decryption failed: %s", exc)
            return None

    async def save_api_key(self, api_key: str) -> None:
        api_key = (api_key or "").strip()
        if not api_key:
            raise ValidationError("API key must not be empty")
        await self._store.set(OPENAI_API_KEY_NAME, await self._codec.encrypt(api_key))

    async def seed_from_settings(self, settings: Settings) -> bool:
        """Store ``OPENAI_API_KEY`` from the environment once, if none is stored yet."""
        if not settings.OPENAI_API_KEY:
            return False
        if await self._store.get(OPENAI_API_KEY_NAME):
            return False
        await self.save_api_key(settings.OPENAI_API_KEY)
        logger.info("Stored OpenAI API key from environment")
        return True
