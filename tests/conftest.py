"""
Shared fixtures for the APA GraphQL client tests.

Provides a scripted GraphQL transport that answers the login handshake and
ordinary queries from queued responses, and a clock the tests can move.
"""

import asyncio
from collections import defaultdict, deque
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List

import pytest

from apa_shared.exceptions import TransportFailure
from apa_shared.interfaces import IHTTPTransport
from apa_shared.models import CredentialSet
from apa_client.auth.handshake import AuthHandshake
from apa_client.auth.identity import identity_of
from apa_client.auth.storage_backends import InMemoryKeyValueStore
from apa_client.auth.token_manager import TokenManager
from apa_client.auth.token_storage import TokenStore
from apa_client.query_executor import QueryExecutor

TEST_URL = "https://graphql.test/graphql"


def login_success(device_token: str = "device-1") -> Dict[str, Any]:
    return {'data': {'login': {'__typename': 'SuccessLoginPayload', 'deviceRefreshToken': device_token}}}


def login_denied(reason: str = "bad password") -> Dict[str, Any]:
    return {'data': {'login': {'__typename': 'DeniedLoginPayload', 'reason': reason}}}


def authorized(refresh_token: str = "refresh-1") -> Dict[str, Any]:
    return {'data': {'authorize': {'refreshToken': refresh_token, '__typename': 'AuthorizePayload'}}}


def access_granted(access_token: str = "access-1") -> Dict[str, Any]:
    return {'data': {'generateAccessToken': {'accessToken': access_token}}}


def access_refused(message: str = "Invalid refresh token") -> Dict[str, Any]:
    return {'data': {'generateAccessToken': None}, 'errors': [{'message': message}]}


def token_expired() -> Dict[str, Any]:
    return {'data': None, 'errors': [{'message': 'jwt expired', 'extensions': {'name': 'TokenExpired'}}]}


class ScriptedTransport(IHTTPTransport):
    """
    Transport answering each kind of operation from its own response queue.

    Requests are routed by the mutation they contain: login, authorize,
    generateAccessToken, or anything else ("query"). The last response of a
    queue is repeated once the queue runs dry.
    """

    def __init__(self):
        self.responses: Dict[str, deque] = defaultdict(deque)
        self.calls: List[Dict[str, Any]] = []

    @staticmethod
    def route(body: Optional[Dict[str, Any]]) -> str:
        query = (body or {}).get('query', '')
        for operation in ('login', 'authorize', 'generateAccessToken'):
            if f"{operation}(" in query:
                return operation
        return 'query'

    def script(self, operation: str, *responses) -> "ScriptedTransport":
        self.responses[operation].extend(responses)
        return self

    def count(self, operation: str) -> int:
        return sum(1 for call in self.calls if call['operation'] == operation)

    def calls_for(self, operation: str) -> List[Dict[str, Any]]:
        return [call for call in self.calls if call['operation'] == operation]

    async def request(self, method, url, headers=None, json_body=None):
        # Yield like a real network call so concurrent callers interleave
        await asyncio.sleep(0)

        operation = self.route(json_body)
        self.calls.append({
            'operation': operation,
            'method': method,
            'url': url,
            'headers': dict(headers or {}),
            'body': json_body
        })

        queue = self.responses[operation]
        if not queue:
            raise AssertionError(f"No scripted response for {operation}")
        response = queue.popleft() if len(queue) > 1 else queue[0]

        if isinstance(response, Exception):
            raise response
        return response


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def credentials():
    return CredentialSet(email="player@example.com", password="s3cret")


@pytest.fixture
def identity(credentials):
    return identity_of(credentials)


@pytest.fixture
def transport():
    return ScriptedTransport()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend():
    return InMemoryKeyValueStore()


@pytest.fixture
def token_store(backend, clock):
    return TokenStore(backend, clock=clock)


@pytest.fixture
def handshake(transport, token_store):
    return AuthHandshake(transport, token_store, endpoint_url=TEST_URL)


@pytest.fixture
def token_manager(token_store, handshake):
    return TokenManager(token_store, handshake)


@pytest.fixture
def executor(transport, token_manager):
    return QueryExecutor(transport, token_manager, endpoint_url=TEST_URL)


@pytest.fixture
def transport_failure():
    return TransportFailure("connection refused")
