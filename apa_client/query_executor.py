"""
GraphQL query execution with transparent token renewal.

Sends caller-supplied queries with the access token attached and, when the
server reports the token as expired, renews it and re-sends the query once.
"""

import logging
from typing import Optional, Dict, Any

from apa_shared.interfaces import IHTTPTransport
from apa_shared.logging_config import AuditLogger
from apa_shared.models import CredentialSet
from apa_client.api_client import build_graphql_body, DEFAULT_GRAPHQL_URL
from apa_client.auth.token_manager import TokenManager

logger = logging.getLogger(__name__)

TOKEN_EXPIRED_ERROR = "TokenExpired"
AUTH_HEADER = "authenticate"
MAX_TOKEN_RETRIES = 1


def is_token_expired_response(response: Dict[str, Any]) -> bool:
    """Check whether the first GraphQL error is the server's token expiration signal."""
    errors = response.get('errors') if isinstance(response, dict) else None
    if not isinstance(errors, list) or not errors:
        return False

    first_error = errors[0]
    if not isinstance(first_error, dict):
        return False

    extensions = first_error.get('extensions')
    return isinstance(extensions, dict) and extensions.get('name') == TOKEN_EXPIRED_ERROR


class QueryExecutor:
    """Executes GraphQL queries, renewing the access token at most once per query."""

    def __init__(
        self,
        transport: IHTTPTransport,
        token_manager: TokenManager,
        endpoint_url: str = DEFAULT_GRAPHQL_URL,
        audit_logger: Optional[AuditLogger] = None
    ):
        self.transport = transport
        self.token_manager = token_manager
        self.endpoint_url = endpoint_url
        self.audit_logger = audit_logger or AuditLogger()

    async def _send(self, query: str, variables: Dict[str, Any], access_token: str) -> Dict[str, Any]:
        return await self.transport.request(
            'POST',
            self.endpoint_url,
            headers={
                'Content-Type': 'application/json',
                AUTH_HEADER: access_token
            },
            json_body=build_graphql_body(query, variables)
        )

    async def execute(
        self,
        query: str,
        variables: Optional[Dict[str, Any]],
        access_token: str,
        credentials: CredentialSet,
        identity: str
    ) -> Dict[str, Any]:
        """
        Execute a query and return the raw GraphQL response.

        GraphQL errors other than token expiration are returned untouched, as
        is a second expiration signal after the single retry.

        Args:
            query: GraphQL document
            variables: Query variables
            access_token: Access token to send first
            credentials: Credentials for re-resolving the token
            identity: Credential identity of the cached tokens

        Returns:
            Parsed GraphQL response
        """
        variables = variables or {}
        retries = 0

        while True:
            response = await self._send(query, variables, access_token)

            if retries >= MAX_TOKEN_RETRIES or not is_token_expired_response(response):
                if retries and is_token_expired_response(response):
                    logger.warning(f"Access token for {identity} still rejected after renewal")
                return response

            retries += 1
            logger.info(f"Access token for {identity} expired on the server, renewing")

            await self.token_manager.invalidate_access_token(identity)
            access_token = await self.token_manager.resolve(credentials, identity)
            self.audit_logger.log_query_retry(identity)
