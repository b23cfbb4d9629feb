"""Leaderboard endpoints."""

from __future__ import annotations

import structlog
from aiohttp import web

from race_server.api.forms import LeaderboardQuery, SubmitForm, parse_id_list

logger = structlog.get_logger()


async def get_leaderboard(request: web.Request) -> web.Response:
    svc = request.app["svc"]
    q = LeaderboardQuery.parse(request.query, svc.config)
    page = svc.store.query(
        q.track_id,
        skip=q.skip,
        amount=q.amount,
        only_verified=q.only_verified,
        requesting_hash=q.user_token_hash,
    )
    return web.json_response(page.to_json())


async def submit_leaderboard(request: web.Request) -> web.Response:
    svc = request.app["svc"]
    form = SubmitForm.parse(await request.post(), svc.config)

    p = form.profile
    svc.store.upsert_player(p.token_hash, p.name, p.car_colors)
    result = svc.store.submit(form.track_id, p.token_hash, form.frames, form.recording)
    logger.info(
        "leaderboard submission",
        track_id=form.track_id,
        frames=form.frames,
        entry_id=result.entry_id,
        new_position=result.new_rank,
    )
    return web.json_response(
        {
            "uploadId": result.entry_id,
            "previousPosition": None,
            "newPosition": result.new_rank,
        }
    )


async def get_recordings(request: web.Request) -> web.Response:
    svc = request.app["svc"]
    ids = parse_id_list(request.query.get("recordingIds"), svc.config.max_recording_ids)
    return web.json_response(svc.store.get_recordings(ids))
