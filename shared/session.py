"""Session tokens identifying the journal owner."""

import hmac
import json
import os
from datetime import datetime, timedelta
from typing import Dict, Optional

from cryptography.fernet import Fernet, InvalidToken

from shared.exceptions import AuthenticationError

SESSION_TTL = timedelta(days=30)


class SessionService:
    """Issues and verifies Fernet-sealed session tokens."""

    def __init__(self, secret_key: Optional[str] = None, ttl: timedelta = SESSION_TTL):
        """
        Initialize session service.

        Args:
            secret_key: Base64-encoded Fernet key. If not provided, will attempt
                        to load from SESSION_SECRET env var or generate a new key
                        (sessions then do not survive a restart)
            ttl: How long an issued token stays valid
        """
        if secret_key:
            self.key = secret_key.encode()
        else:
            env_key = os.getenv('SESSION_SECRET')
            if env_key:
                self.key = env_key.encode()
            else:
                self.key = Fernet.generate_key()

        self.cipher = Fernet(self.key)
        self.ttl = ttl

    def issue(self, owner: str) -> str:
        """
        Issue a session token for an owner.

        Args:
            owner: Authenticated username

        Returns:
            Opaque session token
        """
        if not owner:
            raise AuthenticationError("Cannot issue a session without an owner")

        expires = datetime.utcnow() + self.ttl
        payload = json.dumps({"username": owner, "expires": expires.isoformat()})
        return self.cipher.encrypt(payload.encode()).decode()

    def verify(self, token: str) -> str:
        """
        Verify a session token and return its owner.

        Args:
            token: Session token from a cookie or bearer header

        Returns:
            Owner identity

        Raises:
            AuthenticationError: If the token is missing, forged or expired
        """
        if not token:
            raise AuthenticationError("No session")

        try:
            raw = self.cipher.decrypt(token.encode(), ttl=int(self.ttl.total_seconds()))
        except InvalidToken:
            raise AuthenticationError("Invalid or expired session")

        payload = json.loads(raw.decode())
        username = payload.get("username")
        if not username:
            raise AuthenticationError("Session has no owner")
        return username

    def current_owner(self, token: Optional[str]) -> Optional[str]:
        """Return the owner for a token, or None when it does not verify."""
        try:
            return self.verify(token)
        except AuthenticationError:
            return None

    @staticmethod
    def authenticate(username: str, password: str, users: Dict[str, str]) -> str:
        """
        Check a username and password against the configured user table.

        Returns:
            The username

        Raises:
            AuthenticationError: On unknown user or wrong password
        """
        expected = users.get(username)
        if expected is None or not hmac.compare_digest(str(expected), password or ""):
            raise AuthenticationError("Invalid username or password")
        return username
