"""Chat completion engine for the summarization service."""

import logging
import aiohttp
from typing import Any, Dict, List, Optional

from ..errors import SummarizationError

logger = logging.getLogger(__name__)


class ChatCompletionEngine:
    """Simple engine for sending chat messages to an OpenAI-compatible API."""

    def __init__(self, api_key: str, model: str = "gpt-4o-mini",
                 base_url: str = "https://api.openai.com/v1"):
        """Initialize chat completion engine.

        Args:
            api_key: OpenAI API key
            model: Chat model used for summarization
            base_url: API base URL
        """
        self.api_key = api_key
        self.model = model
        self.base_url = f"{base_url.rstrip('/')}/chat/completions"

        logger.info(f"ChatCompletionEngine initialized with model: {model}")

    async def send_messages(self, messages: List[Dict[str, str]], temperature: float = 0.3,
                            max_tokens: int = 2000,
                            response_format: Optional[Dict[str, Any]] = None) -> str:
        """Send chat messages and get the response text.

        Args:
            messages: Chat messages (role/content)
            temperature: Temperature for response generation (0.0 to 1.0)
            max_tokens: Maximum tokens in response
            response_format: Optional structured output request, e.g. {"type": "json_object"}

        Returns:
            Response text

        Raises:
            SummarizationError: If the API call fails
        """
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

        data: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens
        }
        if response_format:
            data["response_format"] = response_format

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(self.base_url, headers=headers, json=data) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        if response.status == 429:
                            message = "Rate limit exceeded. Please try again later."
                        else:
                            message = f"Summarization API error: {response.status} - {error_text}"
                        raise SummarizationError(message, status=response.status)

                    result = await response.json()
        except aiohttp.ClientError as e:
            raise SummarizationError(f"Summarization request failed: {e}") from e

        return result["choices"][0]["message"]["content"].strip()
