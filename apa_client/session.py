"""
GraphQL session facade for the APA GraphQL client.

This module wires the configuration, token storage, login handshake, token
manager and query executor together and runs single queries or batches of
queries on behalf of one credential set.
"""

import logging
import time
import uuid
from datetime import datetime
from typing import Optional, Dict, Any, List, Callable

from apa_shared.exceptions import ApaClientError, handle_exception
from apa_shared.interfaces import IHTTPTransport, IKeyValueStore
from apa_shared.logging_config import AuditLogger, OperationLogger
from apa_shared.models import CredentialSet, QueryRequest
from apa_client.api_client import GraphQLHTTPClient
from apa_client.auth.handshake import AuthHandshake
from apa_client.auth.identity import identity_of
from apa_client.auth.storage_backends import create_key_value_store
from apa_client.auth.token_manager import TokenManager
from apa_client.auth.token_storage import TokenStore
from apa_client.config import ClientConfiguration
from apa_client.query_executor import QueryExecutor

logger = logging.getLogger(__name__)


class GraphQLSession:
    """
    Runs authenticated GraphQL queries against the APA server.

    Tokens are cached in the configured backend and reused across sessions
    that share it. A transport passed in by the caller is not closed by the
    session.
    """

    def __init__(
        self,
        config: Optional[ClientConfiguration] = None,
        transport: Optional[IHTTPTransport] = None,
        backend: Optional[IKeyValueStore] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.config = config or ClientConfiguration()

        self._owns_transport = transport is None
        self.transport = transport or GraphQLHTTPClient(timeout=self.config.get_server_timeout())

        endpoint_url = self.config.get_server_url()
        self.audit_logger = AuditLogger()
        self.operation_logger = OperationLogger()

        self.token_store = TokenStore(
            backend if backend is not None else create_key_value_store(self.config),
            access_token_ttl=self.config.get_access_token_ttl(),
            clock=clock
        )
        self.handshake = AuthHandshake(
            self.transport,
            self.token_store,
            endpoint_url=endpoint_url,
            audit_logger=self.audit_logger
        )
        self.token_manager = TokenManager(
            self.token_store,
            self.handshake,
            single_flight=self.config.is_single_flight_enabled(),
            audit_logger=self.audit_logger
        )
        self.executor = QueryExecutor(
            self.transport,
            self.token_manager,
            endpoint_url=endpoint_url,
            audit_logger=self.audit_logger
        )

        logger.debug(f"GraphQL session created for {endpoint_url}")

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        """Release the HTTP transport if this session created it."""
        if self._owns_transport and isinstance(self.transport, GraphQLHTTPClient):
            await self.transport.close()

    def _credentials(self, credentials: Optional[CredentialSet]) -> CredentialSet:
        return credentials or self.config.get_credentials()

    async def execute(
        self,
        query: str,
        variables: Optional[Dict[str, Any]] = None,
        credentials: Optional[CredentialSet] = None
    ) -> Dict[str, Any]:
        """
        Execute one GraphQL query.

        Args:
            query: GraphQL document
            variables: Query variables
            credentials: Account to run as (configured account if omitted)

        Returns:
            Raw GraphQL response

        Raises:
            ApaClientError: On authentication, protocol, transport or
                storage failures
        """
        credentials = self._credentials(credentials)
        identity = identity_of(credentials)

        access_token = await self.token_manager.resolve(credentials, identity)
        return await self.executor.execute(query, variables, access_token, credentials, identity)

    async def execute_batch(
        self,
        requests: List[QueryRequest],
        credentials: Optional[CredentialSet] = None,
        continue_on_fail: Optional[bool] = None
    ) -> List[Dict[str, Any]]:
        """
        Execute queries one after another.

        Args:
            requests: Queries to run, in order
            credentials: Account to run as (configured account if omitted)
            continue_on_fail: Record failures as {"error": message} items
                instead of raising (configured value if omitted)

        Returns:
            One response per request, in request order
        """
        if continue_on_fail is None:
            continue_on_fail = self.config.is_continue_on_fail()

        credentials = self._credentials(credentials)
        identity = identity_of(credentials)
        results: List[Dict[str, Any]] = []

        for index, request in enumerate(requests):
            operation_id = str(uuid.uuid4())
            start_time = time.monotonic()
            self.operation_logger.log_operation_start(
                "graphql_query", operation_id, identity, context={'index': index}
            )

            try:
                response = await self.execute(request.query, request.variables, credentials)
            except Exception as e:
                error = e if isinstance(e, ApaClientError) else handle_exception(e, {'index': index})
                self.operation_logger.log_operation_complete(
                    operation_id, False, time.monotonic() - start_time, error.message
                )
                if not continue_on_fail:
                    if error is e:
                        raise
                    raise error from e

                self.audit_logger.log_error(error, identity)
                results.append({'error': error.message})
                continue

            self.operation_logger.log_operation_complete(
                operation_id, True, time.monotonic() - start_time
            )
            results.append(response)

        return results

    async def logout(self, credentials: Optional[CredentialSet] = None) -> str:
        """
        Forget the cached tokens of an account.

        Returns:
            The credential identity that was cleared
        """
        return await self.token_manager.logout(self._credentials(credentials))
