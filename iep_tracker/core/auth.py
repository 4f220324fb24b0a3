"""
Google OAuth2 for the Drive mirror: installed-app flow, cached token file, refresh on expiry.
Only the resulting bearer token string is handed to the storage layer.
"""
import os
from pathlib import Path
from typing import Optional
import logging

from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request

SCOPES = ["https://www.googleapis.com/auth/drive.file"]


def _expand_path(path_str: str) -> str:
    """Expand user and env vars in path."""
    s = os.path.expanduser(path_str)
    s = os.path.expandvars(s)
    return s


class DriveAuth:
    """Token cache for one Google account."""

    def __init__(
        self,
        client_secret_path: Optional[str],
        token_path: str,
        logger: Optional[logging.Logger] = None,
    ):
        self.client_secret_path = _expand_path(client_secret_path) if client_secret_path else None
        self.token_path = _expand_path(token_path)
        self.logger = logger or logging.getLogger(__name__)

    def _load_cached(self) -> Optional[Credentials]:
        token_path = Path(self.token_path)
        if not token_path.exists():
            return None
        try:
            return Credentials.from_authorized_user_file(str(token_path), SCOPES)
        except (ValueError, OSError) as e:
            self.logger.warning(f"Could not load Google token from {token_path}: {e}")
            return None

    def _store(self, creds: Credentials) -> None:
        token_path = Path(self.token_path)
        token_path.parent.mkdir(parents=True, exist_ok=True)
        with open(token_path, "w") as f:
            f.write(creds.to_json())

    def access_token(self, interactive: bool = False) -> Optional[str]:
        """Return a valid bearer token, refreshing it if needed.

        With interactive=True a browser login is started when no usable token is cached.
        Returns None when signed out.
        """
        creds = self._load_cached()
        if creds and creds.valid:
            return creds.token

        if creds and creds.expired and creds.refresh_token:
            try:
                creds.refresh(Request())
                self._store(creds)
                return creds.token
            except GoogleAuthError as e:
                self.logger.warning(f"Google token refresh failed: {e}")

        if not interactive:
            return None
        return self.login()

    def login(self) -> Optional[str]:
        """Run the installed-app OAuth flow and cache the token."""
        if not self.client_secret_path or not Path(self.client_secret_path).exists():
            self.logger.error(f"Client secret not found: {self.client_secret_path}")
            return None
        try:
            flow = InstalledAppFlow.from_client_secrets_file(self.client_secret_path, SCOPES)
            creds = flow.run_local_server(port=0)
        except (GoogleAuthError, ValueError, OSError) as e:
            self.logger.error(f"OAuth flow failed: {e}")
            return None
        self._store(creds)
        self.logger.info("Google login successful, token stored")
        return creds.token

    def logout(self) -> bool:
        """Forget the cached token. Returns True if one was removed."""
        token_path = Path(self.token_path)
        if token_path.exists():
            token_path.unlink()
            self.logger.info("Google token removed")
            return True
        return False
