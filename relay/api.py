"""
HTTP and WebSocket handlers for the SyncWatch relay
"""
import asyncio
import contextlib
import logging

from aiohttp import web

from . import protocol
from .engine import Relay
from .errors import DeliveryError

logger = logging.getLogger("syncwatch")

RELAY_KEY = web.AppKey("relay", Relay)
HEARTBEAT_KEY = web.AppKey("ws_heartbeat", float)

# ============================================================
# WEBSOCKET TRANSPORT
# ============================================================


class WebSocketConnection:
    """One client channel with an ordered outbound queue

    send() never blocks: frames are queued and written by run_writer().
    """

    def __init__(self, ws: web.WebSocketResponse):
        self.ws = ws
        self._outbox: asyncio.Queue = asyncio.Queue()

    @property
    def closed(self) -> bool:
        return self.ws.closed

    def send(self, event: dict) -> None:
        if self.ws.closed:
            raise DeliveryError("connection closed")
        self._outbox.put_nowait(protocol.encode_event(event))

    async def run_writer(self) -> None:
        while True:
            data = await self._outbox.get()
            try:
                await self.ws.send_str(data)
            except Exception as e:
                logger.debug(f"Failed to send to WebSocket: {e}")
                return


async def ws_sync(request: web.Request) -> web.StreamResponse:
    """WebSocket endpoint carrying the sync protocol"""
    ws = web.WebSocketResponse(heartbeat=request.app.get(HEARTBEAT_KEY))
    if not ws.can_prepare(request).ok:
        raise web.HTTPNotFound()
    await ws.prepare(request)

    relay = request.app[RELAY_KEY]
    connection = WebSocketConnection(ws)
    writer = asyncio.create_task(connection.run_writer())
    relay.on_connect(connection)

    try:
        async for msg in ws:
            if msg.type in (web.WSMsgType.TEXT, web.WSMsgType.BINARY):
                relay.on_message(connection, msg.data)
            elif msg.type == web.WSMsgType.ERROR:
                relay.on_transport_error(connection, ws.exception())
    finally:
        relay.on_disconnect(connection)
        writer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await writer

    return ws

# ============================================================
# HEALTH
# ============================================================


async def health(request: web.Request) -> web.Response:
    return web.Response(text="OK")
