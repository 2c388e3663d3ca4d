"""OpenAI Realtime API client: credential exchange and websocket connection."""

import logging
from typing import Any, Dict, Optional

import aiohttp

from ..errors import (
    CredentialExchangeError,
    RateLimitedError,
    classify_transport_error,
    is_rate_limit_message,
)

logger = logging.getLogger(__name__)

REALTIME_MODEL = "gpt-4o-realtime-preview-2024-12-17"

TURN_DETECTION = {
    "type": "server_vad",
    "threshold": 0.5,
    "prefix_padding_ms": 300,
    "silence_duration_ms": 500,
    "create_response": False,
}

_INSTRUCTIONS = {
    "am": ("You are a silent meeting transcription system for AMHARIC language. "
           "Always write in Ge'ez script, never use Latin letters and never "
           "transliterate. Identify speakers as speaker 1, speaker 2, etc. "
           "DO NOT respond or speak back. Only transcribe silently."),
    "ar": ("You are a silent meeting transcription system for ARABIC language. "
           "Always write in Arabic script, never use Latin letters. Identify "
           "speakers as speaker 1, speaker 2, etc. DO NOT respond or speak back. "
           "Only transcribe silently."),
}

_DEFAULT_INSTRUCTIONS = (
    "You are a silent meeting transcription system. Always transcribe speech in "
    "its ORIGINAL SCRIPT, never transliterate or romanize. Automatically detect "
    "language and identify different speakers as Speaker 1, Speaker 2, etc. "
    "DO NOT respond or speak back. Only transcribe silently."
)


def session_instructions(language: str) -> str:
    return _INSTRUCTIONS.get(language, _DEFAULT_INSTRUCTIONS)


def transcription_config(language: str, model: str = "whisper-1") -> Dict[str, Any]:
    """Input transcription settings; 'auto' leaves language detection to the service."""
    config: Dict[str, Any] = {"model": model}
    if language and language != "auto":
        config["language"] = language
    return config


def session_update_event(language: str, transcription_model: str = "whisper-1") -> Dict[str, Any]:
    """The session.update sent once the server announces session.created."""
    return {
        "type": "session.update",
        "session": {
            "modalities": ["text"],
            "instructions": session_instructions(language),
            "input_audio_format": "pcm16",
            "input_audio_transcription": transcription_config(language, transcription_model),
            "turn_detection": dict(TURN_DETECTION),
        },
    }


class OpenAIRealtimeClient:
    """Obtains short-lived client secrets and opens Realtime websockets."""

    def __init__(self, api_key: str, model: str = REALTIME_MODEL,
                 transcription_model: str = "whisper-1",
                 base_url: str = "https://api.openai.com/v1"):
        """Initialize the Realtime client.

        Args:
            api_key: OpenAI API key, used only for the credential exchange
            model: Realtime model name
            transcription_model: Model for input audio transcription
            base_url: API base URL
        """
        self.api_key = api_key
        self.model = model
        self.transcription_model = transcription_model
        self.base_url = base_url.rstrip("/")
        self.session: Optional[aiohttp.ClientSession] = None

        logger.info(f"OpenAIRealtimeClient initialized with model: {model}")

    def _http(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession()
        return self.session

    async def create_client_secret(self, language: str = "auto") -> str:
        """Exchange the API key for an ephemeral Realtime client secret.

        Raises:
            RateLimitedError: The exchange was rejected with a rate limit signature
            CredentialExchangeError: Any other failure of the exchange
        """
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }
        data = {
            "model": self.model,
            "modalities": ["text"],
            "instructions": session_instructions(language),
            "input_audio_transcription": transcription_config(language, self.transcription_model),
            "turn_detection": dict(TURN_DETECTION),
        }

        logger.info(f"Requesting realtime client secret (language={language})")
        try:
            async with self._http().post(f"{self.base_url}/realtime/sessions",
                                         headers=headers, json=data) as response:
                if response.status != 200:
                    error_text = await response.text()
                    message = f"Realtime session request failed: {response.status} - {error_text}"
                    if is_rate_limit_message(error_text, response.status):
                        raise RateLimitedError(message, status=response.status)
                    raise CredentialExchangeError(message, status=response.status)
                result = await response.json()
        except aiohttp.ClientError as e:
            raise classify_transport_error(f"Realtime session request failed: {e}") from e

        secret = (result.get("client_secret") or {}).get("value")
        if not secret:
            raise CredentialExchangeError("Realtime session response carried no client secret")
        return secret

    async def open_connection(self, client_secret: str) -> aiohttp.ClientWebSocketResponse:
        """Open the Realtime websocket authenticated with `client_secret`."""
        url = f"{self.base_url.replace('https://', 'wss://', 1)}/realtime?model={self.model}"
        headers = {
            "Authorization": f"Bearer {client_secret}",
            "OpenAI-Beta": "realtime=v1",
        }
        try:
            ws = await self._http().ws_connect(url, headers=headers, heartbeat=30.0)
        except aiohttp.WSServerHandshakeError as e:
            raise classify_transport_error(
                f"Realtime connection failed: {e.status} - {e.message}", status=e.status) from e
        except aiohttp.ClientError as e:
            raise classify_transport_error(f"Realtime connection failed: {e}") from e
        logger.info("Realtime websocket connected")
        return ws

    async def close(self) -> None:
        if self.session is not None and not self.session.closed:
            await self.session.close()
        self.session = None
