"""
api/routes/v1/pages.py -- Gated page requests.

Each configured page (Settings.page_access) is a route with an access rule
set. A request to /api/v1/pages/{route} runs the full pipeline: resolve the
identity, evaluate the page's rules, then run any login/logout task named by
the "task" parameter (login.login / login.logout), so a page can host its own
login form or logout link.

Responses:
  302 -- a task produced a redirect, or an anonymous caller was sent to the
         login route (with ?next= pointing back here)
  403 -- denied inline: the body says whether to show the login form or the
         not-authorized notice
  200 -- allowed
  404 -- route not configured
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse

from api.models import PageResponse
from auth.dependencies import build_context, commit_session, get_core
from auth.models import Decision
from core.config import get_settings

logger = logging.getLogger("gatehouse.api.pages")

router = APIRouter()


def _normalize(route: str) -> str:
    return "/" + route.strip("/")


async def _serve(request: Request, route: str):
    route = _normalize(route)
    rules = get_settings().page_access.get(route)
    if rules is None:
        logger.debug("Unknown page %r requested", route)
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Unknown page."})

    form = dict(await request.form()) if request.method == "POST" else None
    ctx = build_context(request, form)
    core = get_core(request)
    result = core.run(ctx, rules)
    access = result.access

    if result.outcome is not None and result.outcome.redirect is not None:
        resp = RedirectResponse(result.outcome.redirect, status_code=302)
        resp.headers["Cache-Control"] = "no-store"
        return commit_session(request, ctx, resp)

    if access.decision is Decision.DENY_REDIRECT:
        target = f"{access.redirect}?{urlencode({'next': route})}"
        return commit_session(request, ctx, RedirectResponse(target, status_code=302))

    status = 403 if access.decision is Decision.DENY_INLINE else 200
    if result.outcome is not None and result.outcome.template is not None and status == 200:
        # An open page that hosted a failed login re-renders its form.
        status = 401
    body = PageResponse.build(route, access, result.identity, result.outcome)
    return commit_session(request, ctx, JSONResponse(status_code=status, content=body.model_dump()))


@router.get("/pages/{route:path}", response_model=PageResponse)
async def get_page(request: Request, route: str):
    """Serve a gated page. Query parameters may carry a logout task."""
    return await _serve(request, route)


@router.post("/pages/{route:path}", response_model=PageResponse)
async def post_page(request: Request, route: str):
    """Serve a gated page with a posted form, typically an embedded login form."""
    return await _serve(request, route)
