"""
auth/messages.py -- User-visible notice queue stored on the session.

Fire-and-forget: components add() messages while handling a request, the
next page render (GET /api/v1/auth/messages) fetch()es and clears them.
Message texts are fixed strings from MESSAGES; user input never ends up in
them.
"""

from __future__ import annotations

from auth.models import Session

# Fixed notice texts. One generic text for every authentication failure so
# the response never reveals whether the username exists [C1].
MESSAGES: dict[str, str] = {
    "ACCESS_DENIED": "Access denied. You are not authorized to view this content.",
    "LOGIN_FAILED": "Login failed. Invalid username or password.",
    "LOGIN_SUCCESSFUL": "You have been successfully logged in.",
    "LOGGED_OUT": "You have been successfully logged out.",
    "REMEMBER_ME_STOLEN_COOKIE": (
        "Someone else has used your login information to access this page! "
        "All sessions were logged out. Please log in with your credentials and check your data."
    ),
    "OAUTH_FAILED": "OAuth authentication failed. Please try again.",
    "REGISTRATION_SUCCESSFUL": "Registration successful.",
}

SEVERITIES = ("info", "warning", "error")


class MessageQueue:
    def __init__(self, session: Session) -> None:
        self._session = session

    def add(self, message: str, severity: str = "info") -> None:
        if severity not in SEVERITIES:
            severity = "info"
        self._session.messages.append({"message": message, "severity": severity})

    def notify(self, key: str, severity: str = "info") -> None:
        """Queue one of the fixed MESSAGES by key."""
        self.add(MESSAGES[key], severity)

    def all(self) -> list[dict[str, str]]:
        return list(self._session.messages)

    def fetch(self) -> list[dict[str, str]]:
        """Return and clear every queued message."""
        queued = list(self._session.messages)
        self._session.messages.clear()
        return queued
