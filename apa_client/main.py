"""
Command line entry point for the APA GraphQL client.

Runs one GraphQL query as the configured account and prints the raw response
as JSON. Logging goes to stderr so the output can be piped.
"""

import sys
import json
import asyncio
import getpass
import argparse
import logging
from pathlib import Path
from typing import Optional, Dict, Any, List, Tuple

from apa_shared.exceptions import ApaClientError, ValidationError, handle_exception
from apa_shared.logging_config import LogLevel, LogFormat, setup_logging, log_structured_error
from apa_shared.models import QueryRequest, variables_from_pairs
from apa_client.config import ClientConfiguration, write_default_config
from apa_client.session import GraphQLSession

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="apa-graphql",
        description="Run GraphQL queries against the APA league server",
        epilog="""
Examples:
  %(prog)s --query '{ viewer { id } }'
  %(prog)s --query-file team.graphql --var teamId=1234
  %(prog)s --query-file stats.graphql --variables '{"season": 2}'
  %(prog)s --logout
  %(prog)s --init-config ~/.config/apa-graphql/client.conf
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    # Query input (mutually exclusive)
    query_group = parser.add_mutually_exclusive_group()
    query_group.add_argument("--query", type=str, metavar="DOCUMENT",
                             help="GraphQL document to execute")
    query_group.add_argument("--query-file", type=str, metavar="FILE",
                             help="Read the GraphQL document from a file")
    query_group.add_argument("--logout", action="store_true",
                             help="Forget cached tokens for the account and exit")
    query_group.add_argument("--init-config", type=str, metavar="PATH",
                             help="Write a configuration template and exit")

    variables_group = parser.add_argument_group('Variables')
    variables_group.add_argument("--variables", type=str, metavar="JSON",
                                 help="Query variables as a JSON object")
    variables_group.add_argument("--var", action="append", default=[], metavar="NAME=VALUE",
                                 help="Set one variable (repeatable, overrides --variables)")

    # Configuration options
    config_group = parser.add_argument_group('Configuration')
    config_group.add_argument("--config", type=str, metavar="FILE",
                              help="Path to configuration file")
    config_group.add_argument("--url", type=str, metavar="URL",
                              help="Override GraphQL endpoint URL")
    config_group.add_argument("--email", type=str, metavar="EMAIL",
                              help="Override account email")
    config_group.add_argument("--store", type=str, choices=["memory", "file", "keyring"],
                              help="Override token store backend")
    config_group.add_argument("--continue-on-fail", action="store_true",
                              help="Print errors as {\"error\": message} instead of failing")

    # Debug options
    debug_group = parser.add_argument_group('Debug')
    debug_group.add_argument("--debug", action="store_true",
                             help="Enable debug logging")
    debug_group.add_argument("--log-file", type=str, metavar="FILE",
                             help="Also log to this file")
    debug_group.add_argument("--log-format", type=str, choices=[f.value for f in LogFormat],
                             help="Log output format")

    args = parser.parse_args(argv)

    if not (args.query or args.query_file or args.logout or args.init_config):
        parser.error("one of --query, --query-file, --logout or --init-config is required")

    return args


def parse_var(assignment: str) -> Tuple[str, Any]:
    """
    Parse a NAME=VALUE assignment.

    The value is decoded as JSON when possible, so numbers and booleans keep
    their types; anything else is taken as a plain string.
    """
    name, sep, raw_value = assignment.partition('=')
    if not sep or not name.strip():
        raise ValidationError(f"Invalid variable assignment: {assignment!r}", field_name="var")

    try:
        value = json.loads(raw_value)
    except ValueError:
        value = raw_value
    return name.strip(), value


def build_variables(args: argparse.Namespace) -> Dict[str, Any]:
    """Merge --variables and --var into one mapping."""
    variables: Dict[str, Any] = {}

    if args.variables:
        try:
            variables = json.loads(args.variables)
        except ValueError as e:
            raise ValidationError(f"--variables is not valid JSON: {e}", field_name="variables", cause=e)
        if not isinstance(variables, dict):
            raise ValidationError("--variables must be a JSON object", field_name="variables")

    variables.update(variables_from_pairs([parse_var(item) for item in args.var]))
    return variables


def read_query(args: argparse.Namespace) -> str:
    """Get the GraphQL document from --query or --query-file."""
    if args.query_file:
        try:
            return Path(args.query_file).read_text()
        except OSError as e:
            raise ValidationError(
                f"Cannot read query file {args.query_file}: {e}",
                field_name="query_file",
                cause=e
            )
    return args.query


def build_configuration(args: argparse.Namespace) -> ClientConfiguration:
    """Load configuration and apply command line overrides."""
    config = ClientConfiguration(args.config)

    config.set_override('server.url', args.url)
    config.set_override('auth.email', args.email)
    config.set_override('storage.backend', args.store)
    if args.continue_on_fail:
        config.set_override('execution.continue_on_fail', True)

    # Prompt rather than fail when only the password is missing
    if config.get_config('auth.email') and not config.get_config('auth.password') and sys.stdin.isatty():
        config.set_override('auth.password', getpass.getpass("APA password: "))

    return config


def configure_logging(args: argparse.Namespace, config: ClientConfiguration) -> None:
    """Set up logging from command line options and configuration."""
    level = LogLevel.DEBUG if args.debug else LogLevel(config.get_log_level())
    log_format = LogFormat(args.log_format or config.get_log_format())
    setup_logging(level, log_format, args.log_file or config.get_log_file())


async def run(args: argparse.Namespace, config: ClientConfiguration) -> int:
    """Execute the requested operation and print its result."""
    async with GraphQLSession(config) as session:
        if args.logout:
            identity = await session.logout()
            print(json.dumps({'logged_out': identity}))
            return EXIT_SUCCESS

        request = QueryRequest(query=read_query(args), variables=build_variables(args))
        results = await session.execute_batch([request])

    print(json.dumps(results[0], indent=2))
    return EXIT_SUCCESS


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_arguments(argv)

    if args.init_config:
        try:
            path = write_default_config(args.init_config)
        except ApaClientError as e:
            print(f"Error: {e.user_message}", file=sys.stderr)
            return EXIT_FAILURE
        print(f"Configuration template written to {path}")
        return EXIT_SUCCESS

    try:
        config = build_configuration(args)
        configure_logging(args, config)
        return asyncio.run(run(args, config))
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return EXIT_INTERRUPTED
    except ApaClientError as e:
        log_structured_error(logger, e)
        print(f"Error: {e.user_message}", file=sys.stderr)
        return EXIT_FAILURE
    except Exception as e:
        error = handle_exception(e)
        logger.exception("Unexpected error")
        print(f"Error: {error.message}", file=sys.stderr)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
