"""
Authentication package for the APA GraphQL session client.

This package contains the token lifecycle engine: credential identities,
token storage with expiry handling, the login handshake, and access token
resolution.
"""
