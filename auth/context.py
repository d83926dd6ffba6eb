"""
auth/context.py -- Explicit per-request input to every entry point.

The HTTP layer builds a RequestContext from the FastAPI Request (method,
route parameters, form body, cookies) and the loaded Session, then hands it
to the pipeline. Nothing in auth/ reads request globals.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from auth.messages import MessageQueue
from auth.models import Session, TokenPair


@dataclass
class RequestContext:
    session: Session
    method: str = "GET"
    path: str = "/"
    params: dict[str, str] = field(default_factory=dict)
    form: dict[str, Any] = field(default_factory=dict)
    # Remember-me pair presented by the browser, parsed from its cookie.
    remember_token: TokenPair | None = None
    # The pair it was rotated into during this request, until delivered.
    rotated_token: TokenPair | None = None
    # Where to send the caller after a successful task. Already validated.
    referrer: str = "/"

    @property
    def messages(self) -> MessageQueue:
        return MessageQueue(self.session)

    @property
    def task(self) -> str | None:
        """The requested task name without its "login." prefix, e.g. "login" or "logout".

        A POSTed task field wins over a route parameter.
        """
        task = self.form.get("task") or self.params.get("task")
        if not task or not isinstance(task, str):
            return None
        return task[len("login.") :] if task.startswith("login.") else task
