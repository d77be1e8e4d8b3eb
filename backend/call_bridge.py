"""
One CallBridge per Twilio media stream.

Twilio frames and OpenAI realtime events are read by two reader tasks into a
single bounded inbox. One worker (``run``) handles inbox events strictly in
arrival order, so no two handlers of the same call ever interleave. Writes to
either socket go through an ``OutboundLeg``.

States: AWAITING_START -> ACTIVE -> ENDED.
"""
import asyncio
import json
import logging
import time
from datetime import datetime
from enum import Enum

import websockets
from fastapi.websockets import WebSocketDisconnect

import realtime
from audio_codec import AudioFrameError, ai_to_telephony, telephony_to_ai
from config import CALL_INBOX_SIZE, LEG_QUEUE_SIZE, REALTIME_LOG_EVERY_EVENT, TWILIO_PHONE_NUMBER
from legs import OutboundLeg
from registry import CallRegistry
from session import CallSession
from store import RecordStore
from tools import ToolDispatcher

logger = logging.getLogger("ivr.call")

TELEPHONY = "telephony"
AI = "ai"
LEG_CLOSED = "__closed__"


class CallState(str, Enum):
    AWAITING_START = "awaiting_start"
    ACTIVE = "active"
    ENDED = "ended"


class CallBridge:
    def __init__(self, websocket, store: RecordStore, registry: CallRegistry,
                 connect_ai=realtime.connect_realtime,
                 inbox_size: int = CALL_INBOX_SIZE, leg_queue_size: int = LEG_QUEUE_SIZE):
        self.websocket = websocket
        self.store = store
        self.registry = registry
        self.connect_ai = connect_ai
        self.session = CallSession()
        self.state = CallState.AWAITING_START
        self.tools = ToolDispatcher(store, self.session, defer=self.defer)

        self.telephony = OutboundLeg("TWILIO", websocket.send_json, leg_queue_size)
        self.ai: OutboundLeg | None = None
        self._leg_queue_size = leg_queue_size
        self._ai_ws = None
        self._ai_reader: asyncio.Task | None = None
        self._inbox: asyncio.Queue = asyncio.Queue(maxsize=inbox_size)
        self._background: set[asyncio.Task] = set()
        self._greeted = False
        self._ended = False

    @property
    def sid(self) -> str:
        return self.session.call_sid or self.session.stream_sid or "n/a"

    # ── Main loop ──────────────────────────────────────────────────────────────
    async def run(self) -> None:
        self.telephony.start()
        reader = asyncio.create_task(self._read_telephony(), name="twilio-reader")
        try:
            while self.state is not CallState.ENDED:
                source, event = await self._inbox.get()
                try:
                    await self.handle(source, event)
                except Exception:
                    logger.exception("[CALL] %s handler failed sid=%s", source, self.sid)
        finally:
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)
            await self._end()
            await self.telephony.aclose()

    async def handle(self, source: str, event: dict) -> None:
        if source == TELEPHONY:
            await self._handle_telephony(event)
        else:
            await self._handle_ai(event)

    # ── Readers ────────────────────────────────────────────────────────────────
    async def _read_telephony(self) -> None:
        try:
            async for message in self.websocket.iter_text():
                try:
                    data = json.loads(message)
                except ValueError:
                    logger.warning("[CALL] Ignoring malformed Twilio message sid=%s", self.sid)
                    continue
                if not isinstance(data, dict):
                    logger.warning("[CALL] Ignoring non-object Twilio message sid=%s", self.sid)
                    continue
                await self._inbox.put((TELEPHONY, data))
        except WebSocketDisconnect:
            logger.info("[CALL] Twilio WS disconnected sid=%s", self.sid)
        except RuntimeError as e:
            if "WebSocket is not connected" not in str(e):
                logger.exception("[CALL] Twilio reader failed sid=%s", self.sid)
            else:
                logger.info("[CALL] Twilio WS already closed sid=%s", self.sid)
        except Exception:
            logger.exception("[CALL] Twilio reader failed sid=%s", self.sid)
        await self._inbox.put((TELEPHONY, {"event": LEG_CLOSED}))

    async def _read_ai(self, ws) -> None:
        try:
            async for raw in ws:
                try:
                    data = json.loads(raw)
                except ValueError:
                    logger.warning("[OPENAI] Ignoring malformed event sid=%s", self.sid)
                    continue
                if not isinstance(data, dict):
                    logger.warning("[OPENAI] Ignoring non-object event sid=%s", self.sid)
                    continue
                await self._inbox.put((AI, data))
        except websockets.ConnectionClosed as e:
            logger.info("[OPENAI] Realtime WS closed sid=%s: %s", self.sid, e)
        except Exception:
            logger.exception("[OPENAI] Realtime reader failed sid=%s", self.sid)
        await self._inbox.put((AI, {"type": LEG_CLOSED}))

    # ── Twilio events ──────────────────────────────────────────────────────────
    async def _handle_telephony(self, data: dict) -> None:
        event = data.get("event")
        if event == "media":
            await self._on_media(data)
        elif event == "start":
            await self._on_start(data)
        elif event == "stop":
            logger.info("[CALL] Stream stop sid=%s", self.sid)
            await self._end()
        elif event == LEG_CLOSED:
            logger.info("[CALL] Twilio WS closed sid=%s", self.sid)
            await self._end()

    async def _on_start(self, data: dict) -> None:
        if self.state is not CallState.AWAITING_START:
            logger.warning("[CALL] Duplicate start ignored sid=%s", self.sid)
            return

        start = data.get("start") or {}
        params = start.get("customParameters") or {}
        s = self.session
        s.stream_sid = str(start.get("streamSid") or data.get("streamSid") or "")
        s.call_sid = str(params.get("callSid") or start.get("callSid") or "")
        s.caller = str(params.get("callerPhone") or "")
        s.called = str(params.get("calledNumber") or TWILIO_PHONE_NUMBER)
        s.started_at = time.monotonic()
        logger.info("[CALL] Stream started stream_sid=%s call_sid=%s", s.stream_sid, s.call_sid or "n/a")

        try:
            restaurant = await asyncio.to_thread(self.store.resolve_restaurant, s.called)
        except Exception:
            logger.exception("[STORE] Restaurant lookup failed sid=%s", self.sid)
            restaurant = None

        if restaurant is None:
            logger.error("[CALL] No restaurant found for %s, hanging up sid=%s", s.called or "n/a", self.sid)
            self.state = CallState.ENDED
            await self._close_telephony()
            return

        s.restaurant = restaurant
        self.state = CallState.ACTIVE
        self.registry.register(s)

        try:
            s.call_log_id = await asyncio.to_thread(
                self.store.get_or_create_call_log, s.call_sid, restaurant, s.caller, s.called
            )
        except Exception:
            logger.exception("[STORE] Call log lookup failed sid=%s", self.sid)

        await self._open_ai()

    async def _on_media(self, data: dict) -> None:
        if self.ai is None or not self.ai.open:
            return
        payload = (data.get("media") or {}).get("payload")
        try:
            audio = telephony_to_ai(payload)
        except AudioFrameError as e:
            logger.warning("[AUDIO] Dropping inbound frame sid=%s: %s", self.sid, e)
            return
        await self.ai.send(realtime.audio_append(audio), droppable=True)

    # ── OpenAI events ──────────────────────────────────────────────────────────
    async def _handle_ai(self, msg: dict) -> None:
        event_type = msg.get("type")
        if REALTIME_LOG_EVERY_EVENT and event_type != "response.audio.delta":
            logger.info("[OPENAI] event=%s sid=%s", event_type, self.sid)

        if event_type == "response.audio.delta":
            await self._on_audio_delta(msg)

        elif event_type == "session.updated":
            if not self._greeted and self.session.restaurant is not None:
                self._greeted = True
                logger.info("[OPENAI] Session configured, sending greeting sid=%s", self.sid)
                await self._send_ai(realtime.greeting_response(self.session.restaurant))

        elif event_type == "response.created":
            self.session.response_in_flight = True

        elif event_type == "response.done":
            self.session.response_in_flight = False

        elif event_type == "input_audio_buffer.speech_started":
            await self._barge_in()

        elif event_type == "conversation.item.input_audio_transcription.completed":
            self._save_transcript("caller", msg.get("transcript"))

        elif event_type == "response.audio_transcript.done":
            self._save_transcript("ai", msg.get("transcript"))

        elif event_type == "response.function_call_arguments.done":
            await self._on_function_call(msg)

        elif event_type == "error":
            err = msg.get("error") if isinstance(msg.get("error"), dict) else {}
            logger.error("[OPENAI] error %s: %s sid=%s",
                         err.get("code", "unknown"), err.get("message", "unknown error"), self.sid)

        elif event_type == LEG_CLOSED:
            logger.info("[OPENAI] Realtime leg gone, call stays up sid=%s", self.sid)
            if self.ai is not None:
                await self.ai.aclose(timeout=1.0)

    async def _on_audio_delta(self, msg: dict) -> None:
        delta = msg.get("delta")
        if not delta or not self.session.stream_sid:
            return
        try:
            audio = ai_to_telephony(delta)
        except AudioFrameError as e:
            logger.warning("[AUDIO] Dropping outbound frame sid=%s: %s", self.sid, e)
            return
        await self.telephony.send({
            "event": "media",
            "streamSid": self.session.stream_sid,
            "media": {"payload": audio},
        }, droppable=True)

    async def _barge_in(self) -> None:
        logger.info("[CALL] speech_started, interrupting sid=%s", self.sid)
        if self.session.response_in_flight:
            await self._send_ai(realtime.RESPONSE_CANCEL)
            self.session.response_in_flight = False
        dropped = self.telephony.discard_droppable()
        if dropped:
            logger.debug("[CALL] Discarded %d queued frames sid=%s", dropped, self.sid)
        await self.telephony.send({"event": "clear", "streamSid": self.session.stream_sid})

    async def _on_function_call(self, msg: dict) -> None:
        result = await self.tools.dispatch(msg.get("name"), msg.get("arguments"))
        await self._send_ai(realtime.function_output(msg.get("call_id"), result))
        await self._send_ai(realtime.RESPONSE_CREATE)

    def _save_transcript(self, role: str, text) -> None:
        if text and self.session.call_log_id:
            self.defer(self.store.add_transcript, self.session.call_log_id, role, text,
                       what="transcript")

    # ── AI leg ─────────────────────────────────────────────────────────────────
    async def _open_ai(self) -> None:
        try:
            ws = await self.connect_ai()
        except Exception as e:
            logger.error("[OPENAI] Realtime connect failed sid=%s: %s", self.sid, e)
            return
        self._ai_ws = ws
        self.ai = OutboundLeg("OPENAI", self._write_ai, self._leg_queue_size)
        self.ai.start()
        self._ai_reader = asyncio.create_task(self._read_ai(ws), name="openai-reader")
        logger.info("[OPENAI] Realtime WS connected sid=%s", self.sid)
        await self.ai.send(realtime.session_update(self.session.restaurant))

    async def _write_ai(self, payload: dict) -> None:
        await self._ai_ws.send(json.dumps(payload))

    async def _send_ai(self, payload: dict) -> None:
        if self.ai is not None:
            await self.ai.send(payload)

    # ── Background store writes ────────────────────────────────────────────────
    def defer(self, fn, *args, what: str = "store write", **kwargs) -> None:
        task = asyncio.create_task(self._background_write(fn, args, kwargs, what))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _background_write(self, fn, args, kwargs, what: str) -> None:
        try:
            await asyncio.to_thread(fn, *args, **kwargs)
        except Exception:
            logger.exception("[STORE] %s failed sid=%s", what, self.sid)

    async def drain_background(self) -> None:
        """Wait for background writes issued so far."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ── Teardown ───────────────────────────────────────────────────────────────
    async def _end(self) -> None:
        self.state = CallState.ENDED
        if self._ended:
            return
        self._ended = True

        s = self.session
        if s.restaurant is not None:
            self.registry.unregister(s)
            if s.call_log_id:
                self.defer(
                    self.store.update_call_log,
                    s.call_log_id,
                    status="completed",
                    ended_at=datetime.utcnow(),
                    duration=s.elapsed_seconds(),
                    what="call log finalize",
                )
            logger.info("[CALL] Call ended sid=%s duration=%ss", self.sid, s.elapsed_seconds())

        await self._close_ai()

    async def _close_ai(self) -> None:
        if self.ai is not None:
            await self.ai.aclose()
        if self._ai_reader is not None:
            self._ai_reader.cancel()
            await asyncio.gather(self._ai_reader, return_exceptions=True)
        if self._ai_ws is not None:
            try:
                await self._ai_ws.close()
            except Exception as e:
                logger.debug("[OPENAI] close ignored: %s", e)

    async def _close_telephony(self) -> None:
        await self.telephony.aclose()
        try:
            await self.websocket.close()
        except Exception as e:
            logger.debug("[TWILIO] close ignored: %s", e)
