"""HTTP control server for a stream session.

Exposes the jump API, calibration introspection and the diagnostic event log
over a small JSON API, plus a WebSocket that pushes events as they happen.
"""

from __future__ import annotations

import asyncio
import contextlib
import datetime as dt
import json
import logging
import math
import time
from functools import partial
from typing import TYPE_CHECKING, Any

from aiohttp import WSMsgType, web

from livejump.timezone import (
    DEFAULT_ZONE,
    PRESET_ZONES,
    format_utc_offset,
    utc_offset_minutes,
)
from livejump.utils import create_task

if TYPE_CHECKING:
    from livejump.events import LogEvent
    from livejump.session import StreamSession

logger = logging.getLogger(__name__)


EVENT_QUEUE_SIZE = 200
"""Events buffered per WebSocket subscriber before the oldest are dropped."""


def _offer(queue: asyncio.Queue[LogEvent], event: LogEvent) -> bool:
    """Queue ``event``, dropping the oldest queued event when full.

    Returns:
        Whether an older event was dropped.
    """
    dropped = False
    if queue.full():
        queue.get_nowait()
        dropped = True
    queue.put_nowait(event)
    return dropped


def _json_safe(value: Any) -> Any:
    """Replace non-finite floats (which JSON cannot carry) with None."""
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return value


def _dumps(data: Any) -> str:
    return json.dumps(_json_safe(data))


json_response = partial(web.json_response, dumps=_dumps)


async def _read_json(request: web.Request) -> dict[str, Any]:
    if not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as err:
        raise web.HTTPBadRequest(text=f"Invalid JSON body: {err}") from err
    if not isinstance(body, dict):
        raise web.HTTPBadRequest(text="JSON body must be an object")
    return body


def create_app(
    session: StreamSession, *, default_zone: str = DEFAULT_ZONE
) -> web.Application:
    """Build the aiohttp application for ``session``."""
    app = web.Application()

    async def calibration_handler(request: web.Request) -> web.Response:
        window = session.window()
        return json_response(
            {
                "attached": session.attached,
                "calibration": session.snapshot().to_dict(),
                "window": (
                    {"start": window.start, "end": window.end, "bufferedEnd": window.buffered_end}
                    if window is not None
                    else None
                ),
            }
        )

    async def jump_handler(request: web.Request) -> web.Response:
        body = await _read_json(request)
        text = body.get("time")
        if not isinstance(text, str):
            raise web.HTTPBadRequest(text="'time' must be a string")
        zone = body.get("zone") or default_zone
        if not isinstance(zone, str):
            raise web.HTTPBadRequest(text="'zone' must be a string")

        date: dt.date | None = None
        if body.get("date") is not None:
            try:
                date = dt.date.fromisoformat(str(body["date"]))
            except ValueError as err:
                raise web.HTTPBadRequest(text=f"Invalid date: {err}") from err

        c_override = body.get("c")
        if c_override is not None and (
            isinstance(c_override, bool) or not isinstance(c_override, (int, float))
        ):
            raise web.HTTPBadRequest(text="'c' must be a number")

        outcome = session.resolve_and_jump(
            text,
            zone,
            date=date,
            c_override=float(c_override) if c_override is not None else None,
        )
        return json_response(outcome.to_dict())

    async def edge_snap_handler(request: web.Request) -> web.Response:
        body = await _read_json(request)
        result = session.edge_snap(manual=bool(body.get("manual", True)))
        return json_response(
            {"result": result.to_dict(), "calibration": session.snapshot().to_dict()}
        )

    async def seek_handler(request: web.Request) -> web.Response:
        body = await _read_json(request)
        try:
            result = session.seek_command(str(body.get("command")))
        except ValueError as err:
            raise web.HTTPBadRequest(text=f"Unknown seek command: {body.get('command')!r}") from err
        if result is None:
            raise web.HTTPConflict(text="No stream attached or position unavailable")
        return json_response(result.to_dict())

    async def events_handler(request: web.Request) -> web.Response:
        kind = request.query.get("kind")
        events = session.event_log.get_all(kind)
        return json_response({"events": [event.to_dict() for event in events]})

    async def events_clear_handler(request: web.Request) -> web.Response:
        session.event_log.clear()
        return json_response({"events": []})

    async def zones_handler(request: web.Request) -> web.Response:
        now = time.time()
        zones = []
        for zone in PRESET_ZONES:
            minutes = utc_offset_minutes(zone, now)
            zones.append(
                {"zone": zone, "offsetMinutes": minutes, "label": format_utc_offset(minutes)}
            )
        return json_response({"default": default_zone, "zones": zones})

    async def ws_handler(request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(heartbeat=30)
        await ws.prepare(request)

        peer = request.remote or "unknown"
        logger.info("Event subscriber connected from %s", peer)
        queue: asyncio.Queue[LogEvent] = asyncio.Queue(maxsize=EVENT_QUEUE_SIZE)

        def on_change() -> None:
            events = session.event_log.get_all()
            if events and _offer(queue, events[-1]):
                logger.debug("Event subscriber %s is behind, dropped oldest event", peer)

        async def pump() -> None:
            while True:
                event = await queue.get()
                await ws.send_str(_dumps(event.to_dict()))

        unsubscribe = session.event_log.subscribe(on_change)
        sender = create_task(pump(), name="event-pump")
        try:
            async for msg in ws:
                if msg.type == WSMsgType.ERROR:
                    logger.debug("Event subscriber error: %s", ws.exception())
                    break
        finally:
            unsubscribe()
            sender.cancel()
            with contextlib.suppress(asyncio.CancelledError, ConnectionResetError):
                await sender
            logger.info("Event subscriber disconnected from %s", peer)
        return ws

    app.router.add_get("/api/calibration", calibration_handler)
    app.router.add_post("/api/jump", jump_handler)
    app.router.add_post("/api/edge-snap", edge_snap_handler)
    app.router.add_post("/api/seek", seek_handler)
    app.router.add_get("/api/events", events_handler)
    app.router.add_delete("/api/events", events_clear_handler)
    app.router.add_get("/api/zones", zones_handler)
    app.router.add_get("/api/ws", ws_handler)
    return app


class ControlServer:
    """Runs the control API for a session on a TCP port."""

    def __init__(
        self,
        session: StreamSession,
        port: int,
        *,
        host: str = "127.0.0.1",
        default_zone: str = DEFAULT_ZONE,
    ) -> None:
        """Initialize the control server.

        Args:
            session: The session to expose.
            port: Port to listen on.
            host: Interface to bind.
            default_zone: Zone used when a jump request names none.
        """
        self._session = session
        self._port = port
        self._host = host
        self._default_zone = default_zone
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    @property
    def url(self) -> str:
        return f"http://{self._host}:{self._port}"

    async def start(self) -> None:
        """Start serving."""
        app = create_app(self._session, default_zone=self._default_zone)
        self._runner = web.AppRunner(app)
        await self._runner.setup()

        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()

        logger.info("Control server listening on %s", self.url)

    async def stop(self) -> None:
        """Stop serving."""
        if self._site is not None:
            await self._site.stop()
            self._site = None
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        logger.debug("Control server stopped")

    async def __aenter__(self) -> ControlServer:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Async context manager exit."""
        await self.stop()
