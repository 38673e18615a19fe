"""
HTTP transport for the APA GraphQL session client.

This module provides the aiohttp-based transport used to POST GraphQL
documents to the server. Transport-level failures are raised as
TransportFailure and are never retried here.
"""

import asyncio
import json
import logging
from typing import Optional, Dict, Any

import aiohttp
from aiohttp import ClientSession, ClientTimeout, ClientError

from apa_shared.exceptions import TransportFailure, ErrorCode
from apa_shared.interfaces import IHTTPTransport

logger = logging.getLogger(__name__)

DEFAULT_GRAPHQL_URL = "https://gql.poolplayers.com/graphql"
USER_AGENT = "ApaGraphQLClient/1.0"


def build_graphql_body(query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Build a standard GraphQL-over-HTTP request body."""
    return {
        'query': query,
        'variables': variables or {}
    }


class GraphQLHTTPClient(IHTTPTransport):
    """
    HTTP transport for the GraphQL endpoint.

    Keeps one aiohttp session for connection pooling; use it as an async
    context manager or call `close()` when done.
    """

    def __init__(self, timeout: float = 30.0):
        self.timeout = ClientTimeout(total=timeout)
        self._session: Optional[ClientSession] = None

    async def __aenter__(self):
        """Async context manager entry."""
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def _ensure_session(self) -> None:
        """Ensure HTTP session is available."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=10,
                limit_per_host=5,
                keepalive_timeout=30,
                enable_cleanup_closed=True
            )
            self._session = ClientSession(
                connector=connector,
                timeout=self.timeout,
                headers={
                    'User-Agent': USER_AGENT,
                    'Accept': 'application/json'
                }
            )

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        json_body: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Send a request and return the parsed JSON body.

        Args:
            method: HTTP method
            url: Absolute URL of the GraphQL endpoint
            headers: Additional request headers
            json_body: Request body, sent as JSON

        Returns:
            Response body as dictionary

        Raises:
            TransportFailure: On connection errors, timeouts, HTTP error
                statuses and bodies that are not a JSON object
        """
        await self._ensure_session()

        logger.debug(f"Making {method} request to {url}")

        try:
            async with self._session.request(
                method=method,
                url=url,
                json=json_body,
                headers=headers or {}
            ) as response:
                text = await response.text()

                if response.status >= 400:
                    raise TransportFailure(
                        f"Request failed ({response.status}): {text[:200] or response.reason}",
                        error_code=ErrorCode.NETWORK_HTTP_ERROR,
                        context={'status': response.status, 'url': url}
                    )

                try:
                    body = json.loads(text)
                except json.JSONDecodeError as e:
                    raise TransportFailure(
                        f"Response from {url} is not valid JSON",
                        error_code=ErrorCode.NETWORK_INVALID_RESPONSE,
                        context={'status': response.status, 'url': url},
                        cause=e
                    )

        except asyncio.TimeoutError as e:
            logger.warning(f"Request to {url} timed out")
            raise TransportFailure(
                f"Request to {url} timed out",
                error_code=ErrorCode.NETWORK_TIMEOUT,
                context={'url': url},
                cause=e
            )
        except (ClientError, OSError) as e:
            logger.warning(f"Network error calling {url}: {e}")
            raise TransportFailure(
                f"Network request to {url} failed: {e}",
                error_code=ErrorCode.NETWORK_CONNECTION_FAILED,
                context={'url': url},
                cause=e
            )

        if not isinstance(body, dict):
            raise TransportFailure(
                f"Response from {url} is not a JSON object",
                error_code=ErrorCode.NETWORK_INVALID_RESPONSE,
                context={'url': url}
            )

        return body
