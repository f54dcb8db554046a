"""Sign-in against the hosted auth service (GoTrue REST) plus role/approval checks.

The auth service only knows e-mail and password. Role and approval live in
the ``profiles`` table, which is read through ProfileRepository once the
service has vouched for the user.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import requests

from .config import AuthConfig
from .db import Db, DbError
from .domain import Profile, UserRole
from .errors import AuthError, PermissionDenied, ValidationError
from .repositories.profile_repo import ProfileRepository

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


@dataclass(frozen=True)
class AuthSession:
    access_token: str
    refresh_token: str
    user_id: str
    email: str
    profile: Profile

    @property
    def role(self) -> UserRole:
        return self.profile.role

    @property
    def is_owner(self) -> bool:
        return self.profile.role == UserRole.OWNER


def _error_text(resp) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    if isinstance(body, dict):
        for key in ("error_description", "msg", "message", "error"):
            if body.get(key):
                return str(body[key])
    return f"HTTP {resp.status_code}"


class AuthClient:
    """Thin wrapper over the auth REST endpoints.

    Transport errors (timeouts, refused connections) propagate as
    ``requests`` exceptions; rejected credentials raise AuthError.
    """

    def __init__(self, cfg: AuthConfig, http: requests.Session | None = None) -> None:
        self.cfg = cfg
        self.http = http or requests.Session()

    def _headers(self, token: str | None = None) -> dict:
        return {
            "apikey": self.cfg.anon_key,
            "Authorization": f"Bearer {token or self.cfg.anon_key}",
            "Content-Type": "application/json",
        }

    def _post(self, path: str, payload: dict, *, token: str | None = None, params: dict | None = None) -> dict:
        resp = self.http.post(
            f"{self.cfg.url}{path}",
            json=payload,
            params=params,
            headers=self._headers(token),
            timeout=self.cfg.session_timeout_seconds,
        )
        if resp.status_code >= 400:
            raise AuthError(_error_text(resp))
        return resp.json() if resp.content else {}

    def sign_in(self, email: str, password: str) -> dict:
        return self._post(
            "/auth/v1/token",
            {"email": email, "password": password},
            params={"grant_type": "password"},
        )

    def sign_up(self, email: str, password: str, *, name: str, role: UserRole) -> dict:
        return self._post(
            "/auth/v1/signup",
            {"email": email, "password": password, "data": {"name": name, "role": role.value}},
        )

    def refresh(self, refresh_token: str) -> dict:
        return self._post(
            "/auth/v1/token",
            {"refresh_token": refresh_token},
            params={"grant_type": "refresh_token"},
        )

    def get_user(self, access_token: str) -> Optional[dict]:
        resp = self.http.get(
            f"{self.cfg.url}/auth/v1/user",
            headers=self._headers(access_token),
            timeout=self.cfg.session_timeout_seconds,
        )
        if resp.status_code in (401, 403):
            return None
        if resp.status_code >= 400:
            raise AuthError(_error_text(resp))
        return resp.json()

    def sign_out(self, access_token: str) -> None:
        try:
            self._post("/auth/v1/logout", {}, token=access_token)
        except (AuthError, requests.RequestException) as e:
            logger.warning("Sign-out was not acknowledged: %s", e)


class SessionManager:
    def __init__(self, *, client: AuthClient, db: Db, profile_repo: ProfileRepository) -> None:
        self.client = client
        self.db = db
        self.profile_repo = profile_repo
        self.current: Optional[AuthSession] = None

    def _profile(self, user_id: str) -> Optional[Profile]:
        with self.db.session() as conn:
            return self.profile_repo.get_by_auth_id(conn, user_id)

    def login(self, email: str, password: str, role: UserRole | str) -> AuthSession:
        try:
            wanted = UserRole(role)
        except ValueError as e:
            raise ValidationError(f"Unknown role: {role}") from e
        if not email.strip() or not password:
            raise ValidationError("Email and password are required.")

        try:
            data = self.client.sign_in(email.strip(), password)
        except requests.RequestException as e:
            raise AuthError("Auth service is unreachable, try again.") from e

        token = data["access_token"]
        user = data["user"]
        profile = self._profile(str(user["id"]))
        if profile is None:
            self.client.sign_out(token)
            raise AuthError("No profile found for this account.")
        if profile.role != wanted:
            self.client.sign_out(token)
            raise AuthError(f"This account is registered as {profile.role.value}, not {wanted.value}.")
        if profile.role == UserRole.STAFF and not profile.is_approved:
            self.client.sign_out(token)
            raise AuthError("Your account is waiting for owner approval.")

        self.current = AuthSession(
            access_token=token,
            refresh_token=data.get("refresh_token", ""),
            user_id=str(user["id"]),
            email=user.get("email", email.strip()),
            profile=profile,
        )
        logger.info("Signed in %s as %s", self.current.email, profile.role.value)
        return self.current

    def register(self, *, name: str, email: str, password: str, role: UserRole | str) -> str:
        """Create the account; OWNER rows are approved by the database trigger, STAFF wait."""
        try:
            wanted = UserRole(role)
        except ValueError as e:
            raise ValidationError(f"Unknown role: {role}") from e
        if not name.strip():
            raise ValidationError("Name cannot be empty.")
        if not email.strip():
            raise ValidationError("Email cannot be empty.")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")

        try:
            data = self.client.sign_up(email.strip(), password, name=name.strip(), role=wanted)
        except requests.RequestException as e:
            raise AuthError("Auth service is unreachable, try again.") from e
        user = data.get("user") or data
        return str(user["id"])

    def restore(self, access_token: str, refresh_token: str = "") -> Optional[AuthSession]:
        """Rebuild a session from stored tokens. Anything doubtful yields no session."""
        try:
            user = self.client.get_user(access_token)
        except (requests.Timeout, requests.ConnectionError) as e:
            logger.warning("Session check timed out, treating caller as signed out: %s", e)
            return None
        except AuthError as e:
            logger.warning("Session check rejected: %s", e)
            return None

        if user is None:
            self.client.sign_out(access_token)
            return None

        try:
            profile = self._profile(str(user["id"]))
        except DbError as e:
            logger.warning("Profile lookup failed during session restore: %s", e)
            return None

        if profile is None or (profile.role == UserRole.STAFF and not profile.is_approved):
            logger.info("Session for user %s has no usable profile, signing out", user["id"])
            self.client.sign_out(access_token)
            return None

        self.current = AuthSession(
            access_token=access_token,
            refresh_token=refresh_token,
            user_id=str(user["id"]),
            email=user.get("email", ""),
            profile=profile,
        )
        return self.current

    def logout(self) -> None:
        if self.current is not None:
            self.client.sign_out(self.current.access_token)
            logger.info("Signed out %s", self.current.email)
        self.current = None


def require_owner(session: Optional[AuthSession]) -> AuthSession:
    if session is None:
        raise AuthError("Login required.")
    if not session.is_owner:
        raise PermissionDenied("Only the owner can do this.")
    return session
