from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Set

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from starlette.websockets import WebSocketState

from .. import __version__
from ..config import Settings
from ..errors import DatabaseError, ProtocolError
from ..logs import setup_logging
from ..router import END_OF_DATA, GREETING, QUERY_VERBS, Command, Reply, parse_command, run_query
from ..timeparse import format_iso_z
from ..tsdb import IoTDBSession, SessionFactory
from .schemas import StreamStatus

log = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000


class State(str, Enum):
    IDLE = "idle"
    AUTHENTICATED = "authenticated"
    STREAMING = "streaming"
    CLOSED = "closed"


@dataclass
class Queued:
    reply: Reply
    generation: int
    close: bool = False


class Connection:
    """One client: a reader (the endpoint coroutine) and a writer task sharing a bounded queue.

    `stop` bumps the generation; the writer drops any reply from an older
    generation at the next row boundary. The reader never waits on the
    writer, so `stop` is read while a stream or a logout is pending.
    """

    def __init__(self, websocket: WebSocket, settings: Settings, session_factory: SessionFactory):
        self.ws = websocket
        self.settings = settings
        self.session_factory = session_factory
        self.lock = asyncio.Lock()
        self.queue: "asyncio.Queue[Queued]" = asyncio.Queue(maxsize=settings.send_queue_size)
        self.state = State.IDLE
        self.user: Optional[str] = None
        self.generation = 0
        self.closing = False
        self._wakeup = asyncio.Event()

    async def send(self, text: str) -> None:
        async with self.lock:
            await self.ws.send_text(text)

    async def close(self, code: int = NORMAL_CLOSURE) -> None:
        async with self.lock:
            if self.ws.application_state != WebSocketState.DISCONNECTED:
                await self.ws.close(code=code)
        self.state = State.CLOSED

    async def enqueue(self, reply: Reply, close: bool = False) -> None:
        await self.queue.put(Queued(reply, self.generation, close))

    def stop(self) -> int:
        """Cancel the running stream and drop queued replies; returns how many were dropped.

        A pending logout survives.
        """
        self.generation += 1
        self._wakeup.set()
        self._wakeup = asyncio.Event()
        kept, dropped = [], 0
        while True:
            try:
                item = self.queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self.queue.task_done()
            if item.close:
                kept.append(item)
            else:
                dropped += 1
        for item in kept:
            self.queue.put_nowait(item)
        return dropped

    # ----------------- writer -----------------

    async def writer(self) -> None:
        while True:
            item = await self.queue.get()
            try:
                if item.close:
                    for line in item.reply.lines:
                        await self.send(line)
                    await self.close(NORMAL_CLOSURE)
                else:
                    await self._emit(item)
            except (WebSocketDisconnect, RuntimeError, OSError) as e:
                log.warning("Sending to %s failed: %s", self.user, e)
                self.state = State.CLOSED
                self.queue.task_done()
                self.stop()
                return
            self.queue.task_done()
            if item.close:
                return

    async def _emit(self, item: Queued) -> None:
        reply = item.reply
        if reply.stream:
            self.state = State.STREAMING
        try:
            for _ in range(reply.loop + 1):
                for line in reply.lines:
                    if item.generation != self.generation:
                        log.info("Stream for %s stopped", self.user)
                        return
                    await self.send(line)
                    if reply.interval > 0:
                        wakeup = self._wakeup
                        with contextlib.suppress(asyncio.TimeoutError):
                            await asyncio.wait_for(wakeup.wait(), timeout=reply.interval)
            if item.generation != self.generation:
                return
            if reply.stream:
                await self.send(END_OF_DATA)
        finally:
            if self.state is State.STREAMING:
                self.state = State.AUTHENTICATED

    # ----------------- reader -----------------

    async def serve(self) -> None:
        await self.send(GREETING)
        writer = asyncio.create_task(self.writer())
        try:
            while self.state is not State.CLOSED:
                message = await self.ws.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", NORMAL_CLOSURE))
                frame = message.get("text")
                if frame is None:
                    log.warning("Binary frame from %s; closing", self.user)
                    self.stop()
                    await self.close(NORMAL_CLOSURE)
                    break
                cmd = parse_command(frame)
                if cmd is not None:
                    await self.handle(cmd)
        except WebSocketDisconnect as e:
            log.info("Client %s disconnected (%s)", self.user, e.code)
        finally:
            writer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await writer
            self.state = State.CLOSED

    async def handle(self, cmd: Command) -> None:
        if self.closing and cmd.verb != "stop":
            log.info("Ignoring %s from %s after logout", cmd.verb, self.user)
            return
        if cmd.verb == "login":
            if not cmd.args:
                log.warning("login without a name")
                return
            self.user = cmd.args[0]
            self.state = State.AUTHENTICATED
            await self.enqueue(Reply([f"{self.user} successfully logged in at {format_iso_z()}"]))
        elif cmd.verb == "logout":
            # the writer sends the goodbye and closes once earlier replies are out
            self.closing = True
            await self.enqueue(Reply([f"thank you ... logging out at {format_iso_z()}"]), close=True)
        elif cmd.verb == "stop":
            dropped = self.stop()
            log.info("stop from %s (%d queued replies dropped)", self.user, dropped)
        elif cmd.verb in QUERY_VERBS:
            await self.enqueue(await self.query(cmd))

    async def query(self, cmd: Command) -> Reply:
        if self.state is State.IDLE:
            return Reply([f"{cmd.verb}: login required"])
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(run_query, self.session_factory, cmd, self.settings),
                timeout=self.settings.timeout_s,
            )
        except asyncio.TimeoutError:
            log.warning("%s timed out after %d ms", cmd.verb, self.settings.timeout_ms)
            return Reply([f"{cmd.verb}: query timed out after {self.settings.timeout_ms} ms"])
        except (DatabaseError, ProtocolError) as e:
            log.warning("%s failed: %s", cmd.verb, e)
            return Reply([f"{cmd.verb}: {e}"])


def create_app(settings: Optional[Settings] = None, session_factory: Optional[SessionFactory] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    factory = session_factory or (lambda: IoTDBSession(settings))

    connections: Set[Connection] = set()

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        for conn in list(connections):
            await conn.close(NORMAL_CLOSURE)

    app = FastAPI(title="etsidata stream", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.connections = connections

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", response_model=StreamStatus)
    def health():
        return StreamStatus(
            status="ok",
            iotdb=f"{settings.iotdb_host}:{settings.iotdb_port}",
            root=settings.identifier_root,
            connections=len(connections),
        )

    @app.websocket("/ws")
    async def stream(websocket: WebSocket):
        await websocket.accept()
        conn = Connection(websocket, settings, factory)
        connections.add(conn)
        log.info("Client connected")
        try:
            await conn.serve()
        finally:
            connections.discard(conn)

    return app


app = create_app()


class StreamServer(uvicorn.Server):
    """Closes every open stream with a normal closure before uvicorn shuts down."""

    def handle_exit(self, sig, frame) -> None:
        connections = self.config.app.state.connections
        loop = asyncio.get_event_loop()
        for conn in list(connections):
            loop.create_task(conn.close(NORMAL_CLOSURE))
        super().handle_exit(sig, frame)


def main() -> None:
    setup_logging()
    settings = Settings.from_env()
    config = uvicorn.Config(create_app(settings), host=settings.ws_host, port=settings.ws_port)
    log.info("Stream server listening on %s:%d", settings.ws_host, settings.ws_port)
    StreamServer(config).run()


if __name__ == "__main__":
    main()
