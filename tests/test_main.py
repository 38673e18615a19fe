#!/usr/bin/env python3
"""
Tests for the apa-graphql command line interface.
"""

import json
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from apa_shared.exceptions import AuthenticationDenied, ValidationError
from apa_shared.models import QueryRequest
from apa_client import main as cli


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    for name in ('APA_EMAIL', 'APA_PASSWORD', 'APA_TOKEN_STORE', 'APA_LOG_LEVEL', 'APA_LOG_FORMAT'):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv('APA_CLIENT_CONFIG', str(tmp_path / "absent.conf"))
    # Keep the test run's own logging handlers in place
    monkeypatch.setattr(cli, 'setup_logging', MagicMock())


@pytest.fixture
def mock_session():
    session = MagicMock()
    session.__aenter__ = AsyncMock(return_value=session)
    session.__aexit__ = AsyncMock(return_value=False)
    session.execute_batch = AsyncMock(return_value=[{'data': {'viewer': {'id': 'P1'}}}])
    session.logout = AsyncMock(return_value="0123456789abcdef")

    with patch.object(cli, 'GraphQLSession', return_value=session) as session_class:
        session_class.instance = session
        yield session_class


class TestArgumentParsing:
    """Test option validation."""

    def test_operation_required(self):
        with pytest.raises(SystemExit):
            cli.parse_arguments([])

    def test_query_and_query_file_are_exclusive(self):
        with pytest.raises(SystemExit):
            cli.parse_arguments(["--query", "{ a }", "--query-file", "q.graphql"])

    def test_store_choices(self):
        with pytest.raises(SystemExit):
            cli.parse_arguments(["--query", "{ a }", "--store", "redis"])


class TestVariables:
    """Test variable assembly."""

    def test_var_values_decoded_as_json_when_possible(self):
        assert cli.parse_var("teamId=1234") == ("teamId", 1234)
        assert cli.parse_var("active=true") == ("active", True)
        assert cli.parse_var("name=Rack Attack") == ("name", "Rack Attack")
        assert cli.parse_var("expr=a=b") == ("expr", "a=b")

    def test_invalid_assignment(self):
        with pytest.raises(ValidationError):
            cli.parse_var("novalue")
        with pytest.raises(ValidationError):
            cli.parse_var("=1")

    def test_var_overrides_variables_json(self):
        args = cli.parse_arguments([
            "--query", "{ a }",
            "--variables", '{"teamId": 1, "season": 2}',
            "--var", "teamId=7",
            "--var", "division=north",
        ])

        assert cli.build_variables(args) == {'teamId': 7, 'season': 2, 'division': 'north'}

    def test_variables_must_be_an_object(self):
        args = cli.parse_arguments(["--query", "{ a }", "--variables", "[1, 2]"])

        with pytest.raises(ValidationError):
            cli.build_variables(args)


class TestMain:
    """Test end-to-end command handling."""

    def test_query_printed_as_json(self, mock_session, capsys, monkeypatch):
        monkeypatch.setenv('APA_EMAIL', "player@example.com")
        monkeypatch.setenv('APA_PASSWORD', "s3cret")

        exit_code = cli.main(["--query", "{ viewer { id } }", "--var", "id=5", "--url", "https://x.test/graphql"])

        assert exit_code == cli.EXIT_SUCCESS
        assert json.loads(capsys.readouterr().out) == {'data': {'viewer': {'id': 'P1'}}}

        config = mock_session.call_args[0][0]
        assert config.get_server_url() == "https://x.test/graphql"
        [request] = mock_session.instance.execute_batch.call_args[0][0]
        assert request == QueryRequest("{ viewer { id } }", {'id': 5})

    def test_query_file(self, mock_session, tmp_path):
        query_file = tmp_path / "team.graphql"
        query_file.write_text("query team { team { name } }")

        assert cli.main(["--query-file", str(query_file)]) == cli.EXIT_SUCCESS

        [request] = mock_session.instance.execute_batch.call_args[0][0]
        assert request.query == "query team { team { name } }"

    def test_missing_query_file(self, mock_session, tmp_path, capsys):
        assert cli.main(["--query-file", str(tmp_path / "absent.graphql")]) == cli.EXIT_FAILURE
        assert "Cannot read query file" in capsys.readouterr().err

    def test_authentication_error_exit_code(self, mock_session, capsys):
        mock_session.instance.execute_batch.side_effect = AuthenticationDenied("locked")

        assert cli.main(["--query", "{ a }"]) == cli.EXIT_FAILURE
        assert "Login failed: locked" in capsys.readouterr().err

    def test_interrupt_exit_code(self, mock_session):
        mock_session.instance.execute_batch.side_effect = KeyboardInterrupt()

        assert cli.main(["--query", "{ a }"]) == cli.EXIT_INTERRUPTED

    def test_logout(self, mock_session, capsys):
        assert cli.main(["--logout", "--store", "file"]) == cli.EXIT_SUCCESS

        assert json.loads(capsys.readouterr().out) == {'logged_out': "0123456789abcdef"}
        assert mock_session.call_args[0][0].get_store_backend() == "file"

    def test_init_config(self, tmp_path, capsys):
        path = tmp_path / "client.conf"

        assert cli.main(["--init-config", str(path)]) == cli.EXIT_SUCCESS
        assert path.exists()
        assert cli.main(["--init-config", str(path)]) == cli.EXIT_FAILURE

    def test_continue_on_fail_flag_sets_override(self, mock_session):
        cli.main(["--query", "{ a }", "--continue-on-fail"])

        assert mock_session.call_args[0][0].is_continue_on_fail() is True
