"""
APA GraphQL session client.

Executes GraphQL queries against the APA league server, handling login,
token caching, refresh and transparent retry on token expiration.
"""

__version__ = "1.0.0"
