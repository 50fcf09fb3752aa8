import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx
from pydantic import TypeAdapter, ValidationError

from config import Config
from models import ContentResult

logger = logging.getLogger(__name__)

API_KEY_HEADER = "x-mcp-api-key"


def encode_component(value: Any) -> str:
    """Percent-encode a query value the way encodeURIComponent does"""
    return quote(str(value), safe="-_.!~*'()")


class ContentClient:
    """Read-only client for the jcg-gamza Content API.

    Every call returns a ContentResult; network errors, non-2xx statuses and
    malformed payloads become failure results instead of exceptions.
    """

    def __init__(self, config: Config, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = config.content_api_url.rstrip("/")
        self.api_key = config.content_api_key
        headers = {"User-Agent": f"{config.mcp_server_name}/{config.mcp_server_version}"}
        if self.api_key:
            headers[API_KEY_HEADER] = self.api_key
        else:
            logger.warning(f"No Content API key configured; requests are sent without {API_KEY_HEADER}")
        self.client = httpx.AsyncClient(
            headers=headers,
            timeout=config.content_api_timeout,
            transport=transport,
        )

    async def close(self):
        """Close the HTTP client"""
        await self.client.aclose()

    async def fetch(self, endpoint: str, response_model: Any = None) -> ContentResult:
        """GET an endpoint and normalize the outcome.

        The API answers with an envelope {success, data, error}; a payload
        without the envelope is taken as the data itself. When response_model
        is given, data is validated into it.
        """
        url = f"{self.base_url}{endpoint}"
        try:
            response = await self.client.get(url)
            if not response.is_success:
                logger.error(f"Content API HTTP error: {response.status_code} for {endpoint}")
                return ContentResult(success=False, error=f"HTTP error! status: {response.status_code}")

            payload = response.json()
            if isinstance(payload, dict) and "success" in payload:
                result = ContentResult.model_validate(payload)
            else:
                result = ContentResult(success=True, data=payload)

            if result.success and result.data is not None and response_model is not None:
                result.data = TypeAdapter(response_model).validate_python(result.data)
            return result

        except httpx.TimeoutException:
            logger.error(f"Content API timeout for {endpoint}")
            return ContentResult(success=False, error="Request timeout - content API is not responding")
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(f"Content API network error for {endpoint}: {e}")
            return ContentResult(success=False, error=str(e) or type(e).__name__)
        except ValueError as e:
            # json.JSONDecodeError and pydantic.ValidationError are both ValueErrors
            logger.error(f"Content API returned an unexpected payload for {endpoint}: {e}")
            if isinstance(e, ValidationError):
                return ContentResult(success=False, error="Unexpected response format from content API")
            return ContentResult(success=False, error=f"Invalid JSON response: {e}")
