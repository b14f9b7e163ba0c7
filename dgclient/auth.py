"""
Static credentials applied to every HTTP request of a transport.

ACL sign-in and token refresh live in ``dgclient.session``; these handlers
cover credentials that never expire from the client's point of view.
"""

import requests


class APIKeyAuth:
    """Dgraph Cloud API key authentication."""

    HEADER = "X-Auth-Token"

    def __init__(self, api_key: str, session: requests.Session):
        """
        Initialize API key authentication.

        Args:
            api_key: Cloud API key
            session: HTTP session the key is attached to
        """
        self.api_key = api_key
        self.session = session
        self.session.headers[self.HEADER] = api_key

    def is_authenticated(self) -> bool:
        return bool(self.api_key)

    def logout(self) -> None:
        self.session.headers.pop(self.HEADER, None)
        self.api_key = None


class BearerTokenAuth:
    """Bearer token presented in the Authorization header."""

    HEADER = "Authorization"

    def __init__(self, token: str, session: requests.Session):
        self.token = token
        self.session = session
        self.session.headers[self.HEADER] = f"Bearer {token}"

    def is_authenticated(self) -> bool:
        return bool(self.token)

    def logout(self) -> None:
        self.session.headers.pop(self.HEADER, None)
        self.token = None
