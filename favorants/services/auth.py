"""Accounts, sessions and profiles."""

import logging
from typing import Any, Optional

from ..errors import AuthorizationError, FavorantsError, NotFoundError, ValidationError
from .base import NO_ROWS_CODE, ServiceBase, error_code

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


class AuthService(ServiceBase):
    """Sign-up, sign-in, session and profile operations."""

    async def sign_up(self, email: str, password: str, username: str) -> dict[str, Any]:
        """Register a new account.

        Returns:
            Dict with user, session and a confirmation message
        """
        if not email or not password or not username:
            raise ValidationError("Email, password and username are required")
        self._check_password(password)

        response = await self.run(lambda: self.backend.sign_up(email, password, username))
        if response is None or response.user is None:
            raise FavorantsError("No user data returned from sign-up")

        logger.info(f"Registered account for {email}")
        return {
            "user": response.user,
            "session": response.session,
            "message": "Please check your email to verify your account.",
        }

    async def sign_in(self, email: str, password: str) -> dict[str, Any]:
        """Sign in and load (or create) the user's profile.

        Returns:
            Dict with user, session and profile
        """
        if not email or not password:
            raise ValidationError("Email and password are required")

        response = await self.run(lambda: self.backend.authenticate(email, password))
        user = response.user
        profile = await self._load_or_create_profile(user) if user is not None else None

        return {"user": user, "session": response.session, "profile": profile}

    async def sign_out(self) -> None:
        await self.run(self.backend.sign_out)

    async def current_user(self) -> Optional[dict[str, Any]]:
        """Return the signed-in user with profile, or None without a session."""
        session = await self.run(self.backend.get_session)
        if not session:
            return None

        user = await self.run(self.backend.get_user)
        if user is None:
            return None

        profile = await self._fetch_profile(user.id)
        return {"user": user, "profile": profile}

    async def get_profile(self, user_id: Any) -> dict[str, Any]:
        profile = await self._fetch_profile(user_id)
        if profile is None:
            raise NotFoundError(f"Profile {user_id} not found")
        return profile

    async def update_profile(self, user_id: Any, updates: dict[str, Any]) -> dict[str, Any]:
        if not updates:
            raise ValidationError("Nothing to update")
        return await self.run(lambda: self.backend.update("profiles", user_id, updates))

    async def search_users(self, query: str, current_user_id: Any) -> list[dict[str, Any]]:
        """Find up to five other users by username or email."""
        query = (query or "").strip()
        if not query:
            return []

        rows = await self.run(
            lambda: self.backend.query(
                "profiles",
                columns="id, username, email",
                or_filter=f"username.ilike.%{query}%,email.ilike.%{query}%",
                limit=6,
            )
        )
        return [row for row in rows if row.get("id") != current_user_id][:5]

    async def update_password(self, new_password: str) -> None:
        self._check_password(new_password)
        await self.run(lambda: self.backend.update_user({"password": new_password}))
        logger.info("Password updated")

    async def change_password(self, current_password: str, new_password: str) -> None:
        """Verify the current password against the live session's email, then update.

        Raises:
            AuthorizationError: Without a signed-in session
        """
        session = await self.run(self.backend.get_session)
        email = getattr(getattr(session, "user", None), "email", None)
        if not email:
            raise AuthorizationError("You must be signed in to change your password")

        self._check_password(new_password)
        await self.run(lambda: self.backend.authenticate(email, current_password))
        await self.update_password(new_password)

    async def refresh_session(self) -> Any:
        return await self.run(self.backend.refresh_session)

    async def _fetch_profile(self, user_id: Any) -> Optional[dict[str, Any]]:
        try:
            return await self.run(
                lambda: self.backend.query("profiles", {"id": user_id}, single=True)
            )
        except Exception as e:
            if error_code(e) != NO_ROWS_CODE:
                raise
            return None

    async def _load_or_create_profile(self, user: Any) -> dict[str, Any]:
        profile = await self._fetch_profile(user.id)
        if profile is not None:
            return profile

        logger.info(f"Creating missing profile for {user.email}")
        return await self.run(
            lambda: self.backend.insert(
                "profiles",
                {
                    "id": user.id,
                    "email": user.email,
                    "username": user.email,
                    "is_admin": False,
                },
            )
        )

    @staticmethod
    def _check_password(password: str) -> None:
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
            )
