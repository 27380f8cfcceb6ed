"""HTTP client for OpenRouter chat completions."""

import asyncio
from typing import Any, Dict, List, Optional

import httpx
from httpx import HTTPStatusError, TimeoutException

from trustdesk.core.config import settings
from trustdesk.core.exceptions import APIClientError, APITimeoutError
from trustdesk.utils.logging import get_logger

LOGGER = get_logger(__name__)


class OpenRouterClient:
    """Chat-completion client with retry and exponential backoff.

    Client errors (4xx other than 429) are not retried.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[int] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[int] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.llm.openrouter_api_key
        self.model = model or settings.llm.openrouter_model
        self.base_url = base_url or settings.llm.openrouter_api_url
        self.timeout = timeout or settings.llm.timeout
        self.max_retries = max_retries or settings.max_retries
        self.retry_delay = retry_delay if retry_delay is not None else settings.retry_delay
        self.logger = LOGGER

    async def generate_content(
        self,
        prompt: str,
        system_instruction: Optional[str] = None,
        temperature: float = 0.1,
        max_tokens: int = 2000,
    ) -> str:
        """Send one chat completion request and return the message text.

        Raises:
            APIClientError: If the request fails or the response is malformed
            APITimeoutError: If every attempt timed out
        """
        messages: List[Dict[str, str]] = []
        if system_instruction:
            messages.append({"role": "system", "content": system_instruction})
        messages.append({"role": "user", "content": prompt})

        response = await self.call_api(
            {
                "model": self.model,
                "messages": messages,
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
        )

        choices = response.get("choices") or []
        if not choices:
            LOGGER.error(f"Unexpected OpenRouter response format: {response}")
            raise APIClientError("Invalid response format from OpenRouter")

        content = (choices[0].get("message") or {}).get("content") or ""
        if not content:
            LOGGER.warning("Empty response from OpenRouter")
        return content

    async def call_api(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST ``payload`` with retry logic and return the parsed JSON body."""
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        self.logger.debug(
            f"Calling LLM API: {self.base_url}",
            extra={"model": self.model, "timeout": self.timeout}
        )

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            for attempt in range(self.max_retries):
                try:
                    response = await client.post(self.base_url, headers=headers, json=payload)
                    response.raise_for_status()
                    return response.json()

                except HTTPStatusError as e:
                    await self._handle_http_error(e, attempt)

                except TimeoutException as e:
                    await self._handle_timeout_error(e, attempt)

                except httpx.TransportError as e:
                    await self._handle_transport_error(e, attempt)

        raise APIClientError(f"Failed to call API {self.base_url} after {self.max_retries} attempts")

    async def _handle_http_error(self, error: HTTPStatusError, attempt: int):
        status_code = error.response.status_code
        error_body = error.response.text

        self.logger.warning(
            f"API HTTP error (Attempt {attempt + 1}/{self.max_retries})",
            extra={"status_code": status_code, "error_body": error_body[:500]}
        )

        if 400 <= status_code < 500 and status_code != 429:
            raise APIClientError(f"API Client Error {status_code}: {error_body}", original_error=error)

        if attempt < self.max_retries - 1:
            await self._wait_before_retry(attempt)
        else:
            raise APIClientError(f"API HTTP Error {status_code} after retries", original_error=error)

    async def _handle_timeout_error(self, error: TimeoutException, attempt: int):
        self.logger.warning(f"API Timeout (Attempt {attempt + 1}/{self.max_retries})")

        if attempt < self.max_retries - 1:
            await self._wait_before_retry(attempt)
        else:
            raise APITimeoutError(f"API Timeout after {self.max_retries} attempts", original_error=error)

    async def _handle_transport_error(self, error: httpx.TransportError, attempt: int):
        self.logger.warning(
            f"API transport error (Attempt {attempt + 1}/{self.max_retries})",
            extra={"error": str(error)}
        )

        if attempt < self.max_retries - 1:
            await self._wait_before_retry(attempt)
        else:
            raise APIClientError(f"API Error: {str(error)}", original_error=error)

    async def _wait_before_retry(self, attempt: int):
        """Exponential backoff wait."""
        await asyncio.sleep(self.retry_delay * (2 ** attempt))
