"""HTTP client for the external HTML to DOCX converter."""

from typing import Optional

import httpx

from trustdesk.core.config import settings
from trustdesk.core.exceptions import ConfigurationError, ConversionError
from trustdesk.utils.logging import get_logger

LOGGER = get_logger(__name__)

DOCX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


class HttpDocumentConverter:
    """Posts rendered HTML to the conversion service and returns DOCX bytes.

    Only used when a binary artifact is requested, never during generation.
    """

    def __init__(self, api_url: Optional[str] = None, timeout: Optional[float] = None):
        self.api_url = api_url if api_url is not None else settings.conversion.api_url
        self.timeout = timeout if timeout is not None else settings.conversion.timeout

    async def to_docx(self, html: str) -> bytes:
        """Convert rendered HTML to a DOCX document.

        Raises:
            ConfigurationError: If no conversion endpoint is configured
            ConversionError: If the service fails or returns no content
        """
        if not self.api_url:
            raise ConfigurationError("CONVERSION_API_URL is not configured")

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self.api_url,
                    json={"html": html, "format": "docx"},
                    headers={"Accept": DOCX_CONTENT_TYPE},
                )
        except httpx.TimeoutException as e:
            LOGGER.warning("Conversion request timed out", extra={"url": self.api_url})
            raise ConversionError(f"Conversion timed out after {self.timeout}s", original_error=e)
        except httpx.HTTPError as e:
            LOGGER.error(f"Conversion request failed: {str(e)}", exc_info=True)
            raise ConversionError(f"Conversion request failed: {str(e)}", original_error=e)

        if response.status_code != 200:
            LOGGER.error(
                f"Conversion service returned an error: {response.text[:500]}",
                extra={"status_code": response.status_code},
            )
            raise ConversionError(f"Conversion failed with status {response.status_code}")

        if not response.content:
            raise ConversionError("Conversion service returned an empty document")

        LOGGER.debug(f"Converted {len(html)} chars of HTML to {len(response.content)} bytes of DOCX")
        return response.content
