"""Player profile endpoints."""

from __future__ import annotations

from aiohttp import web

from race_server.api.forms import ProfileForm, hash_token


async def get_user(request: web.Request) -> web.Response:
    svc = request.app["svc"]
    token = request.query.get("userToken")
    if not token:
        raise web.HTTPBadRequest(text="userToken is required")

    token_hash = hash_token(token)
    player = svc.store.get_player(token_hash)
    if not player:
        return web.json_response(None)
    return web.json_response(
        {
            "name": player["nickname"],
            "carColors": player["carColors"],
            "isVerifier": svc.config.is_verifier(token_hash),
        }
    )


async def update_user(request: web.Request) -> web.Response:
    svc = request.app["svc"]
    form = ProfileForm.parse(await request.post())
    svc.store.upsert_player(form.token_hash, form.name, form.car_colors)
    return web.Response(status=200)
