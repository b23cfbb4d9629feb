"""Hand-off points for the external recording verifier.

Verification itself happens elsewhere; these endpoints only hand out
unverified recordings and record the verifier's verdicts.
"""

from __future__ import annotations

import structlog
from aiohttp import web

from race_server.api.forms import FormError, UnverifiedQuery, VerifyForm

logger = structlog.get_logger()


def _require_verifier(svc, token_hash: str) -> None:
    if not svc.config.is_verifier(token_hash):
        raise web.HTTPForbidden(text="not a verifier")


async def list_unverified(request: web.Request) -> web.Response:
    svc = request.app["svc"]
    q = UnverifiedQuery.parse(request.query, svc.config)
    _require_verifier(svc, q.token_hash)
    return web.json_response(svc.store.unverified(q.amount))


async def submit_verifications(request: web.Request) -> web.Response:
    svc = request.app["svc"]
    try:
        body = await request.json()
    except ValueError:
        raise FormError("body must be JSON")
    form = VerifyForm.parse(body)
    _require_verifier(svc, form.token_hash)

    verified = [r.entry_id for r in form.results if svc.store.mark_verified(r.entry_id, r.frames)]
    logger.info("recordings verified", submitted=len(form.results), verified=len(verified))
    return web.json_response({"verified": verified})
