#!/usr/bin/env python3
"""
Tests for the GraphQL session facade and batch execution.
"""

import asyncio
import pytest
from unittest.mock import AsyncMock, patch

from apa_shared.exceptions import AuthenticationDenied, ConfigurationError, TransportFailure
from apa_shared.models import CredentialSet, QueryRequest, TokenKind
from apa_client.api_client import GraphQLHTTPClient
from apa_client.auth.storage_backends import InMemoryKeyValueStore
from apa_client.config import ClientConfiguration
from apa_client.session import GraphQLSession

from conftest import TEST_URL, login_success, login_denied, authorized, access_granted, token_expired

VIEWER_QUERY = "query viewer { viewer { id } }"
VIEWER_RESPONSE = {'data': {'viewer': {'id': 'P1'}}}


@pytest.fixture
def config(tmp_path):
    config = ClientConfiguration(str(tmp_path / "absent.conf"))
    config.set_override('server.url', TEST_URL)
    config.set_override('auth.email', "player@example.com")
    config.set_override('auth.password', "s3cret")
    return config


@pytest.fixture
def session(config, transport, backend, clock):
    return GraphQLSession(config, transport=transport, backend=backend, clock=clock)


def script_login(transport):
    transport.script('login', login_success())
    transport.script('authorize', authorized("refresh-1"))
    transport.script('generateAccessToken', access_granted("access-1"))


class TestExecute:
    """Test single query execution."""

    @pytest.mark.asyncio
    async def test_first_query_logs_in_then_reuses_token(self, session, transport):
        script_login(transport)
        transport.script('query', VIEWER_RESPONSE)

        assert await session.execute(VIEWER_QUERY) == VIEWER_RESPONSE
        assert await session.execute(VIEWER_QUERY) == VIEWER_RESPONSE

        assert transport.count('login') == 1
        assert transport.count('query') == 2
        assert all(call['url'] == TEST_URL for call in transport.calls)

    @pytest.mark.asyncio
    async def test_sessions_sharing_a_backend_share_tokens(self, config, transport, backend, clock):
        script_login(transport)
        transport.script('query', VIEWER_RESPONSE)

        await GraphQLSession(config, transport=transport, backend=backend, clock=clock).execute(VIEWER_QUERY)
        await GraphQLSession(config, transport=transport, backend=backend, clock=clock).execute(VIEWER_QUERY)

        assert transport.count('login') == 1

    @pytest.mark.asyncio
    async def test_concurrent_sessions_sharing_a_backend_log_in_once(self, config, transport, backend, clock):
        script_login(transport)
        transport.script('query', VIEWER_RESPONSE)
        first = GraphQLSession(config, transport=transport, backend=backend, clock=clock)
        second = GraphQLSession(config, transport=transport, backend=backend, clock=clock)

        results = await asyncio.gather(first.execute(VIEWER_QUERY), second.execute(VIEWER_QUERY))

        assert results == [VIEWER_RESPONSE, VIEWER_RESPONSE]
        assert transport.count('login') == 1
        assert transport.count('generateAccessToken') == 1

    @pytest.mark.asyncio
    async def test_explicit_credentials_override_configuration(self, session, transport):
        script_login(transport)
        transport.script('query', VIEWER_RESPONSE)

        await session.execute(VIEWER_QUERY, credentials=CredentialSet("captain@example.com", "pw"))

        assert transport.calls_for('login')[0]['body']['variables']['username'] == "captain@example.com"

    @pytest.mark.asyncio
    async def test_missing_credentials_raise_configuration_error(self, tmp_path, transport, backend, monkeypatch):
        monkeypatch.delenv('APA_EMAIL', raising=False)
        monkeypatch.delenv('APA_PASSWORD', raising=False)
        config = ClientConfiguration(str(tmp_path / "absent.conf"))
        session = GraphQLSession(config, transport=transport, backend=backend)

        with pytest.raises(ConfigurationError):
            await session.execute(VIEWER_QUERY)
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_server_side_expiry_is_recovered(self, session, transport, backend, identity, clock):
        await session.token_store.set(identity, TokenKind.REFRESH, "refresh-1")
        await session.token_store.set(identity, TokenKind.ACCESS, "access-old")
        transport.script('generateAccessToken', access_granted("access-2"))
        transport.script('query', token_expired(), VIEWER_RESPONSE)

        assert await session.execute(VIEWER_QUERY) == VIEWER_RESPONSE
        assert transport.count('login') == 0


class TestExecuteBatch:
    """Test sequential batch execution."""

    @pytest.mark.asyncio
    async def test_results_in_request_order(self, session, transport):
        script_login(transport)
        first = {'data': {'n': 1}}
        second = {'data': {'n': 2}}
        transport.script('query', first, second)

        results = await session.execute_batch([
            QueryRequest("query one { n }"),
            QueryRequest("query two { n }", {'x': 1}),
        ])

        assert results == [first, second]
        assert transport.calls_for('query')[1]['body']['variables'] == {'x': 1}

    @pytest.mark.asyncio
    async def test_failure_raises_by_default(self, session, transport, transport_failure):
        script_login(transport)
        transport.script('query', transport_failure)

        with pytest.raises(TransportFailure):
            await session.execute_batch([QueryRequest(VIEWER_QUERY), QueryRequest(VIEWER_QUERY)])

        assert transport.count('query') == 1

    @pytest.mark.asyncio
    async def test_continue_on_fail_records_error_items(self, session, transport, transport_failure):
        script_login(transport)
        transport.script('query', transport_failure, VIEWER_RESPONSE)

        results = await session.execute_batch(
            [QueryRequest(VIEWER_QUERY), QueryRequest(VIEWER_QUERY)],
            continue_on_fail=True
        )

        assert results == [{'error': "connection refused"}, VIEWER_RESPONSE]

    @pytest.mark.asyncio
    async def test_continue_on_fail_from_configuration(self, config, transport, backend):
        config.set_override('execution.continue_on_fail', True)
        session = GraphQLSession(config, transport=transport, backend=backend)
        transport.script('login', login_denied("Account locked"))

        results = await session.execute_batch([QueryRequest(VIEWER_QUERY)])

        assert results == [{'error': "Login failed: Account locked"}]

    @pytest.mark.asyncio
    async def test_denied_login_raises_without_continue_on_fail(self, session, transport):
        transport.script('login', login_denied("Account locked"))

        with pytest.raises(AuthenticationDenied):
            await session.execute_batch([QueryRequest(VIEWER_QUERY)])

    @pytest.mark.asyncio
    async def test_unexpected_errors_are_converted(self, session, transport):
        script_login(transport)
        transport.script('query', ValueError("bad payload"))

        results = await session.execute_batch([QueryRequest(VIEWER_QUERY)], continue_on_fail=True)

        assert results == [{'error': "bad payload"}]


class TestLifecycle:
    """Test logout and resource handling."""

    def test_empty_injected_backend_is_used(self, config):
        backend = InMemoryKeyValueStore()

        with patch('apa_client.session.create_key_value_store') as create_store:
            session = GraphQLSession(config, transport=AsyncMock(), backend=backend)

        assert session.token_store.backend is backend
        create_store.assert_not_called()

    @pytest.mark.asyncio
    async def test_logout_forces_new_login(self, session, transport):
        script_login(transport)
        transport.script('query', VIEWER_RESPONSE)
        await session.execute(VIEWER_QUERY)

        await session.logout()
        await session.execute(VIEWER_QUERY)

        assert transport.count('login') == 2

    @pytest.mark.asyncio
    async def test_injected_transport_is_not_closed(self, config, transport, backend):
        transport.close = AsyncMock()

        async with GraphQLSession(config, transport=transport, backend=backend):
            pass

        transport.close.assert_not_called()

    @pytest.mark.asyncio
    async def test_owned_transport_is_closed(self, config, backend):
        with patch.object(GraphQLHTTPClient, 'close', new_callable=AsyncMock) as mock_close:
            async with GraphQLSession(config, backend=backend) as session:
                assert isinstance(session.transport, GraphQLHTTPClient)

        mock_close.assert_awaited_once()
