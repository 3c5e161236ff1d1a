from __future__ import annotations

import aiohttp
from fastapi import FastAPI, Request

from couchpenter.services.couchpenter_service import CouchpenterService


def get_http_session_from_app(app: FastAPI) -> aiohttp.ClientSession:
    session = getattr(app.state, "http_session", None)
    if session is None:
        raise RuntimeError("HTTP session not initialized (app.state.http_session)")
    if not isinstance(session, aiohttp.ClientSession):
        raise RuntimeError("Unexpected http_session type")
    return session


def get_http_session(request: Request) -> aiohttp.ClientSession:
    return get_http_session_from_app(request.app)


def get_couchpenter_service(request: Request) -> CouchpenterService:
    """FastAPI dependency provider, configured from the environment."""

    return CouchpenterService.from_env(session=get_http_session(request))
