"""Realtime transcription session over the OpenAI Realtime websocket.

Lifecycle:
 - connect(): credential exchange, websocket handshake, receive loop task
 - inbound transcript events are cleaned and put on a bounded channel
 - rate-limited failures tear the connection down and schedule ONE
   reconnection task after a backoff (bounded by max_reconnect_attempts)
 - any other failure is surfaced to on_error immediately
 - disconnect() is safe at any point, including mid-handshake
"""

import asyncio
import base64
import json
import logging
import time
from contextlib import suppress
from typing import Any, Callable, Dict, Optional

import aiohttp

from ..errors import GenericTransportError, RateLimitedError, TransportError, classify_transport_error
from ..models import RecognitionEvent
from .assembler import clean_transcript, strip_non_speech
from .realtime_client import OpenAIRealtimeClient, session_update_event

logger = logging.getLogger(__name__)

USER_SPEAKER = "User"
ASSISTANT_SPEAKER = "Assistant"


class RealtimeTranscriptionSession:
    """Long-lived speech-to-text session feeding a recognition channel."""

    def __init__(
        self,
        client: OpenAIRealtimeClient,
        channel: "asyncio.Queue[Optional[RecognitionEvent]]",
        on_error: Optional[Callable[[TransportError], None]] = None,
        on_recovered: Optional[Callable[[], None]] = None,
        on_rate_limited: Optional[Callable[[RateLimitedError, float], None]] = None,
        on_processing: Optional[Callable[[bool], None]] = None,
        on_transcript: Optional[Callable[[str, str], None]] = None,
        language: str = "auto",
        backoff_seconds: float = 10.0,
        max_reconnect_attempts: int = 1,
        backoff_multiplier: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the session.

        Args:
            client: Realtime API client used for credentials and connections
            channel: Bounded queue read by the transcript assembler
            on_error: Receives errors that end the session (no automatic retry left)
            on_recovered: Called after a scheduled reconnection succeeded
            on_rate_limited: Called with the error and the backoff delay before a retry
            on_processing: Speech activity indicator
            on_transcript: Receives (text, speaker) for every forwarded event
            language: Language code or 'auto'
            backoff_seconds: Delay before the first reconnection attempt
            max_reconnect_attempts: Consecutive reconnection attempts allowed
            backoff_multiplier: Growth factor of the delay between attempts
            clock: Monotonic clock for event timestamps
        """
        self.client = client
        self.channel = channel
        self.on_error = on_error
        self.on_recovered = on_recovered
        self.on_rate_limited = on_rate_limited
        self.on_processing = on_processing
        self.on_transcript = on_transcript
        self.language = language
        self.backoff_seconds = backoff_seconds
        self.max_reconnect_attempts = max_reconnect_attempts
        self.backoff_multiplier = backoff_multiplier
        self.clock = clock

        self.meeting_id: Optional[str] = None
        self.ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self.receive_task: Optional[asyncio.Task] = None
        self.reconnect_task: Optional[asyncio.Task] = None
        self.reconnect_attempts = 0
        self.session_configured = False
        self.origin: Optional[float] = None

        # Bumped by disconnect(); work started under an older epoch is abandoned
        self._epoch = 0

    @property
    def is_connected(self) -> bool:
        return self.ws is not None and not self.ws.closed

    @property
    def is_reconnecting(self) -> bool:
        return self.reconnect_task is not None and not self.reconnect_task.done()

    async def connect(self, meeting_id: str) -> None:
        """Open the session for `meeting_id`.

        Raises:
            TransportError: The credential exchange or handshake failed
        """
        if self.is_connected:
            logger.warning("Realtime session already connected")
            return
        self._cancel_reconnect()
        self.meeting_id = meeting_id
        self.reconnect_attempts = 0
        if self.origin is None:
            self.origin = self.clock()
        logger.info(f"Connecting realtime transcription for meeting {meeting_id}")
        await self._open(self._epoch)

    async def _open(self, epoch: int) -> None:
        secret = await self.client.create_client_secret(self.language)
        if epoch != self._epoch:
            logger.info("Disconnected during credential exchange; not opening connection")
            return
        ws = await self.client.open_connection(secret)
        if epoch != self._epoch:
            logger.info("Disconnected during handshake; closing new connection")
            await ws.close()
            return
        self.ws = ws
        self.session_configured = False
        self.receive_task = asyncio.create_task(self._receive_loop(ws, epoch))

    async def disconnect(self) -> None:
        """Close the session; safe whether connected, connecting or idle."""
        self._epoch += 1
        self._cancel_reconnect()

        current = asyncio.current_task()
        task = self.receive_task
        self.receive_task = None
        if task is not None and task is not current and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

        ws = self.ws
        self.ws = None
        if ws is not None and not ws.closed:
            await ws.close()
        self.session_configured = False
        logger.info("Realtime transcription disconnected")

    def _cancel_reconnect(self) -> None:
        if self.reconnect_task is not None and not self.reconnect_task.done():
            if self.reconnect_task is not asyncio.current_task():
                self.reconnect_task.cancel()
                logger.info("Pending reconnection cancelled")
        self.reconnect_task = None

    async def send_text(self, text: str) -> None:
        """Inject a user text message; ignored when not connected."""
        if not self.is_connected:
            logger.warning("Realtime session not connected; text not sent")
            return
        await self._send({
            "type": "conversation.item.create",
            "item": {
                "type": "message",
                "role": "user",
                "content": [{"type": "input_text", "text": text}],
            },
        })
        await self._send({"type": "response.create"})

    async def send_audio(self, pcm16: bytes) -> None:
        """Append 16-bit PCM to the input audio buffer; ignored when not connected."""
        if not self.is_connected or not pcm16:
            return
        await self._send({
            "type": "input_audio_buffer.append",
            "audio": base64.b64encode(pcm16).decode("ascii"),
        })

    async def _send(self, event: Dict[str, Any]) -> None:
        try:
            await self.ws.send_json(event)
        except (ConnectionResetError, aiohttp.ClientError) as e:
            # The receive loop observes the closed socket and handles it
            logger.warning(f"Realtime send failed ({event['type']}): {e}")

    async def _receive_loop(self, ws: aiohttp.ClientWebSocketResponse, epoch: int) -> None:
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    event = self._parse_frame(msg.data)
                    if event is not None:
                        await self._handle_event(event)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    raise classify_transport_error(f"Realtime connection error: {ws.exception()}")
            if epoch == self._epoch:
                raise GenericTransportError(f"Realtime connection closed by server (code {ws.close_code})")
        except asyncio.CancelledError:
            raise
        except TransportError as e:
            if epoch == self._epoch:
                await self._handle_transport_error(e, ws)
        except Exception as e:
            logger.error(f"Realtime receive loop failed: {e}", exc_info=True)
            if epoch == self._epoch:
                await self._handle_transport_error(
                    GenericTransportError(f"Realtime event handling failed: {e}"), ws)

    @staticmethod
    def _parse_frame(data: str) -> Optional[Dict[str, Any]]:
        try:
            event = json.loads(data)
        except ValueError:
            logger.warning(f"Skipping malformed realtime frame: {data[:80]!r}")
            return None
        if not isinstance(event, dict):
            logger.warning(f"Skipping non-object realtime frame: {data[:80]!r}")
            return None
        return event

    async def _handle_event(self, event: Dict[str, Any]) -> None:
        event_type = event.get("type")

        if event_type == "session.created":
            logger.info("Realtime session created, sending configuration")
            await self._send(session_update_event(self.language, self.client.transcription_model))
        elif event_type == "session.updated":
            self.session_configured = True
            logger.info("Realtime session configured")
        elif event_type == "input_audio_buffer.speech_started":
            logger.debug("Speech started")
            self._set_processing(True)
        elif event_type == "input_audio_buffer.speech_stopped":
            logger.debug("Speech stopped, waiting for transcription")
        elif event_type == "conversation.item.input_audio_transcription.completed":
            text = clean_transcript((event.get("transcript") or "").strip())
            if text:
                await self._emit(text, USER_SPEAKER, is_final=True, item_id=event.get("item_id"))
            else:
                logger.debug("Empty transcription received")
            self._set_processing(False)
        elif event_type == "conversation.item.input_audio_transcription.failed":
            logger.warning(f"Transcription failed for item {event.get('item_id')}: "
                           f"{(event.get('error') or {}).get('message')}")
            self._set_processing(False)
        elif event_type == "response.audio_transcript.delta":
            text = strip_non_speech(event.get("delta") or "")
            if text.strip():
                await self._emit(text, ASSISTANT_SPEAKER, is_final=False, item_id=event.get("item_id"))
        elif event_type == "response.done":
            response = event.get("response") or {}
            if response.get("status") == "failed":
                details = (response.get("status_details") or {}).get("error") or {}
                message = details.get("message") or "Realtime response failed"
                code = details.get("code")
                self._surface_in_band(f"{code}: {message}" if code else message)
        elif event_type == "error":
            error = event.get("error") or {}
            self._surface_in_band(error.get("message") or event.get("message") or "Unknown error")

    def _surface_in_band(self, message: str) -> None:
        error = classify_transport_error(message)
        if error.rate_limited:
            # Handled by the receive loop, which owns the teardown
            raise error
        logger.error(f"Realtime API error: {message}")
        self._notify_error(error)

    async def _emit(self, text: str, speaker: str, is_final: bool, item_id: Optional[str]) -> None:
        event = RecognitionEvent(
            text=text,
            speaker=speaker,
            timestamp=self.clock() - (self.origin or 0.0),
            is_final=is_final,
            item_id=item_id,
            language=self.language,
        )
        await self.channel.put(event)
        if self.on_transcript:
            self.on_transcript(text, speaker)

    async def _handle_transport_error(self, error: TransportError,
                                      ws: Optional[aiohttp.ClientWebSocketResponse] = None) -> None:
        if ws is not None:
            if self.ws is ws:
                self.ws = None
            if not ws.closed:
                await ws.close()
        self.receive_task = None
        self._set_processing(False)

        if error.rate_limited and self.reconnect_attempts < self.max_reconnect_attempts:
            self.reconnect_attempts += 1
            delay = self.backoff_seconds * self.backoff_multiplier ** (self.reconnect_attempts - 1)
            logger.warning(f"Rate limited ({error.message}); reconnection attempt "
                           f"{self.reconnect_attempts}/{self.max_reconnect_attempts} in {delay:.0f}s")
            if self.on_rate_limited:
                self.on_rate_limited(error, delay)
            self.reconnect_task = asyncio.create_task(self._reconnect_after(delay, self._epoch))
            return

        logger.error(f"Realtime transcription failed: {error.message}")
        self._notify_error(error)

    async def _reconnect_after(self, delay: float, epoch: int) -> None:
        await asyncio.sleep(delay)
        if epoch != self._epoch:
            return
        logger.info(f"Reconnecting realtime transcription (attempt {self.reconnect_attempts})")
        try:
            await self._open(epoch)
        except TransportError as e:
            if epoch == self._epoch:
                await self._handle_transport_error(e)
            return
        if epoch != self._epoch or not self.is_connected:
            return
        self.reconnect_attempts = 0
        logger.info("Realtime transcription recovered")
        if self.on_recovered:
            self.on_recovered()

    def _notify_error(self, error: TransportError) -> None:
        if self.on_error:
            self.on_error(error)

    def _set_processing(self, processing: bool) -> None:
        if self.on_processing:
            self.on_processing(processing)
