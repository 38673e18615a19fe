"""
Login handshake for the APA GraphQL server.

Turns an email/password pair into a cached refresh token (login, then
authorize with the single-use device refresh token), and a refresh token into
a cached access token (generateAccessToken).
"""

import logging
from typing import Optional, Dict, Any, List

from pydantic import BaseModel, Field

from apa_shared.exceptions import AuthenticationDenied, ProtocolViolation, RefreshTokenExpired
from apa_shared.interfaces import IHTTPTransport
from apa_shared.logging_config import AuditLogger
from apa_shared.models import CredentialSet, TokenKind
from apa_client.api_client import build_graphql_body, DEFAULT_GRAPHQL_URL
from apa_client.auth.token_storage import TokenStore

logger = logging.getLogger(__name__)

LOGIN_MUTATION = """
mutation login($username: String!, $password: String!) {
    login(input: {username: $username, password: $password}) {
        __typename
        ... on SuccessLoginPayload {
            deviceRefreshToken
            __typename
        }
        ... on PartialSuspendedLoginPayload {
            leagueIds
            deviceRefreshToken
            __typename
        }
        ... on DeniedLoginPayload {
            reason
            __typename
        }
    }
}
"""

AUTHORIZE_MUTATION = """
mutation authorize($deviceRefreshToken: String!) {
    authorize(deviceRefreshToken: $deviceRefreshToken) {
        refreshToken
        __typename
    }
}
"""

GENERATE_ACCESS_TOKEN_MUTATION = """
mutation GenerateAccessTokenMutation($refreshToken: String!) {
    generateAccessToken(refreshToken: $refreshToken) {
        accessToken
        __typename
    }
}
"""

SUCCESS_LOGIN = "SuccessLoginPayload"
PARTIAL_SUSPENDED_LOGIN = "PartialSuspendedLoginPayload"
DENIED_LOGIN = "DeniedLoginPayload"


class LoginPayload(BaseModel):
    typename: Optional[str] = Field(None, alias="__typename")
    device_refresh_token: Optional[str] = Field(None, alias="deviceRefreshToken")
    league_ids: Any = Field(None, alias="leagueIds")
    reason: Optional[str] = None


class AuthorizePayload(BaseModel):
    refresh_token: Optional[str] = Field(None, alias="refreshToken")


class GenerateAccessTokenPayload(BaseModel):
    access_token: Optional[str] = Field(None, alias="accessToken")


def _mutation_result(response: Dict[str, Any], field_name: str) -> Dict[str, Any]:
    """Extract `data.<field_name>` from a GraphQL response, or an empty dict."""
    data = response.get('data') if isinstance(response, dict) else None
    result = data.get(field_name) if isinstance(data, dict) else None
    return result if isinstance(result, dict) else {}


def _first_error_message(response: Dict[str, Any]) -> Optional[str]:
    errors = response.get('errors') if isinstance(response, dict) else None
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        return errors[0].get('message')
    return None


class AuthHandshake:
    """
    Stateless orchestration of the login and token generation mutations.

    Everything it learns is written through the token store.
    """

    def __init__(
        self,
        transport: IHTTPTransport,
        token_store: TokenStore,
        endpoint_url: str = DEFAULT_GRAPHQL_URL,
        audit_logger: Optional[AuditLogger] = None
    ):
        self.transport = transport
        self.token_store = token_store
        self.endpoint_url = endpoint_url
        self.audit_logger = audit_logger or AuditLogger()

    async def _post(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        return await self.transport.request(
            'POST',
            self.endpoint_url,
            headers={'Content-Type': 'application/json'},
            json_body=build_graphql_body(query, variables)
        )

    async def login(self, credentials: CredentialSet, identity: str) -> str:
        """
        Log in and store a fresh refresh token.

        Args:
            credentials: Email/password pair
            identity: Credential identity the token is stored under

        Returns:
            The new refresh token

        Raises:
            AuthenticationDenied: If the server rejects the credentials
            ProtocolViolation: If the server omits the device or refresh token
        """
        logger.info(f"Logging in for identity {identity}")

        login_response = await self._post(LOGIN_MUTATION, {
            'username': credentials.email,
            'password': credentials.password
        })
        payload = LoginPayload(**_mutation_result(login_response, 'login'))

        if payload.typename == DENIED_LOGIN:
            self.audit_logger.log_authentication(identity, success=False, failure_reason=payload.reason)
            raise AuthenticationDenied(payload.reason, context={'identity': identity})

        if payload.typename == PARTIAL_SUSPENDED_LOGIN:
            logger.warning(f"Login for {identity} is partially suspended (leagues: {payload.league_ids})")
        elif payload.typename != SUCCESS_LOGIN:
            logger.warning(f"Unexpected login payload type: {payload.typename}")

        if not payload.device_refresh_token:
            server_error = _first_error_message(login_response)
            self.audit_logger.log_authentication(identity, success=False, failure_reason="missing device refresh token")
            raise ProtocolViolation(
                "Failed to get device refresh token from login response"
                + (f": {server_error}" if server_error else ""),
                missing_field="deviceRefreshToken",
                context={'identity': identity, 'typename': payload.typename}
            )

        # The device refresh token is single-use and never stored
        authorize_response = await self._post(AUTHORIZE_MUTATION, {
            'deviceRefreshToken': payload.device_refresh_token
        })
        authorized = AuthorizePayload(**_mutation_result(authorize_response, 'authorize'))

        if not authorized.refresh_token:
            server_error = _first_error_message(authorize_response)
            self.audit_logger.log_authentication(identity, success=False, failure_reason="missing refresh token")
            raise ProtocolViolation(
                "Failed to get refresh token from authorize response"
                + (f": {server_error}" if server_error else ""),
                missing_field="refreshToken",
                context={'identity': identity}
            )

        await self.token_store.set(identity, TokenKind.REFRESH, authorized.refresh_token)
        self.audit_logger.log_authentication(identity, success=True)

        return authorized.refresh_token

    async def generate_access_token(self, refresh_token: str, identity: str) -> str:
        """
        Exchange a refresh token for a stored access token.

        Args:
            refresh_token: Refresh token to exchange
            identity: Credential identity the token is stored under

        Returns:
            The new access token

        Raises:
            RefreshTokenExpired: If the server issues no access token; both
                cached tokens of the identity are cleared first
        """
        response = await self._post(GENERATE_ACCESS_TOKEN_MUTATION, {
            'refreshToken': refresh_token
        })
        payload = GenerateAccessTokenPayload(**_mutation_result(response, 'generateAccessToken'))

        if not payload.access_token:
            # Refresh token is presumably expired; force a fresh login next time
            await self.token_store.clear_all(identity)
            self.audit_logger.log_token_refresh(identity, success=False)
            self.audit_logger.log_token_invalidation(identity, "refresh+access", "refresh token rejected")
            raise RefreshTokenExpired(context={
                'identity': identity,
                'server_error': _first_error_message(response)
            })

        await self.token_store.set(identity, TokenKind.ACCESS, payload.access_token)
        self.audit_logger.log_token_refresh(identity, success=True)

        return payload.access_token
