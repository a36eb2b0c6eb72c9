"""Local HTTP API that lets a running Claude session write back to its thread.

Endpoints:
    GET  /health         liveness, no auth
    POST /send-message   {sessionId, text?, blocks?}
    POST /send-file      {sessionId, filePath, comment?}

The session id (passed to Claude in its system prompt and environment)
is mapped back to the thread through the session registry. When a
secret is configured, requests need ``Authorization: Bearer <secret>``.
"""
from __future__ import annotations

import hmac
import json
import logging
import time
import uuid
from pathlib import Path
from typing import Any

from aiohttp import web

from deskbridge.engine.errors import PlatformError
from deskbridge.engine.platform import ChatPlatform
from deskbridge.engine.session_registry import SessionRegistry

logger = logging.getLogger(__name__)

API_VERSION = "0.1.0"

_PUBLIC_PATHS = frozenset({"/health"})


class BridgeApiServer:
    """aiohttp application serving the bridge API."""

    def __init__(
        self,
        platform: ChatPlatform,
        registry: SessionRegistry,
        *,
        host: str = "127.0.0.1",
        port: int = 3848,
        secret: str = "",
    ) -> None:
        self._platform = platform
        self._registry = registry
        self._host = host
        self._port = port
        self._secret = secret
        self._started_at = time.time()
        self._runner: web.AppRunner | None = None
        self._app = web.Application(
            middlewares=[self._request_logging_middleware, self._auth_middleware]
        )
        self._setup_routes()

    @property
    def app(self) -> web.Application:
        return self._app

    # ── Middleware ──

    @web.middleware
    async def _request_logging_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        req_id = str(uuid.uuid4())[:8]
        start = time.monotonic()
        try:
            response = await handler(request)
        except web.HTTPException as exc:
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.info(
                "HTTP %s %s req=%s status=%s duration_ms=%.1f",
                request.method, request.path, req_id, exc.status, elapsed_ms,
            )
            raise
        except Exception:
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.exception(
                "HTTP %s %s req=%s failed duration_ms=%.1f",
                request.method, request.path, req_id, elapsed_ms,
            )
            raise
        elapsed_ms = (time.monotonic() - start) * 1000
        logger.info(
            "HTTP %s %s req=%s status=%s duration_ms=%.1f",
            request.method, request.path, req_id,
            getattr(response, "status", "?"), elapsed_ms,
        )
        return response

    @web.middleware
    async def _auth_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        if self._secret and request.path not in _PUBLIC_PATHS:
            expected = f"Bearer {self._secret}"
            provided = request.headers.get("Authorization", "")
            if not hmac.compare_digest(provided.encode(), expected.encode()):
                return web.json_response({"error": "Unauthorized"}, status=401)
        return await handler(request)

    # ── Route setup ──

    def _setup_routes(self) -> None:
        r = self._app.router
        r.add_get("/health", self._handle_health)
        r.add_post("/send-message", self._handle_send_message)
        r.add_post("/send-file", self._handle_send_file)

    # ── Lifecycle ──

    async def start(self) -> None:
        runner = web.AppRunner(self._app)
        await runner.setup()
        site = web.TCPSite(runner, self._host, self._port)
        await site.start()
        self._runner = runner
        logger.info("Bridge API listening on %s:%d", self._host, self._port)

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None

    # ── Handlers ──

    async def _read_body(self, request: web.Request) -> dict[str, Any] | web.Response:
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return web.json_response({"error": "Invalid JSON body"}, status=400)
        if not isinstance(body, dict):
            return web.json_response({"error": "Invalid JSON body"}, status=400)
        return body

    def _lookup(self, session_id: Any):
        session = self._registry.find_by_session_id(str(session_id))
        if session is None:
            return web.json_response({"error": f"Session not found: {session_id}"}, status=404)
        return session

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "ok",
            "version": API_VERSION,
            "sessions": len(self._registry),
            "uptime_seconds": round(max(0.0, time.time() - self._started_at), 3),
        })

    async def _handle_send_message(self, request: web.Request) -> web.Response:
        body = await self._read_body(request)
        if isinstance(body, web.Response):
            return body
        session_id = body.get("sessionId")
        text = body.get("text") or ""
        blocks = body.get("blocks")
        if not session_id:
            return web.json_response({"error": "Missing required field: sessionId"}, status=400)
        if not text and not blocks:
            return web.json_response({"error": "Must provide text or blocks (or both)"}, status=400)
        if blocks is not None and not isinstance(blocks, list):
            return web.json_response({"error": "blocks must be a list"}, status=400)

        session = self._lookup(session_id)
        if isinstance(session, web.Response):
            return session

        thread_key = session.thread_key
        try:
            if blocks:
                ts = await self._platform.post_blocks(thread_key, str(text), blocks)
            else:
                ts = await self._platform.post_message(thread_key, str(text))
        except PlatformError as e:
            logger.error("Bridge API message post failed: %s", e)
            return web.json_response({"error": f"Post failed: {e.reason}"}, status=500)

        self._registry.touch(thread_key)
        logger.info("Bridge API posted message to %s", thread_key)
        return web.json_response({"ok": True, "ts": ts})

    async def _handle_send_file(self, request: web.Request) -> web.Response:
        body = await self._read_body(request)
        if isinstance(body, web.Response):
            return body
        session_id = body.get("sessionId")
        file_path = body.get("filePath")
        comment = body.get("comment") or None
        if not session_id or not file_path:
            return web.json_response(
                {"error": "Missing required fields: sessionId, filePath"}, status=400,
            )

        session = self._lookup(session_id)
        if isinstance(session, web.Response):
            return session

        path = Path(str(file_path)).expanduser()
        if not path.is_file():
            return web.json_response({"error": f"File not found: {file_path}"}, status=404)

        try:
            await self._platform.upload_file(session.thread_key, path, comment)
        except PlatformError as e:
            logger.error("Bridge API file upload failed: %s", e)
            return web.json_response({"error": f"Upload failed: {e.reason}"}, status=500)

        self._registry.touch(session.thread_key)
        logger.info("Bridge API uploaded %s to %s", path, session.thread_key)
        return web.json_response({"ok": True})
