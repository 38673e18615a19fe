"""
Shared components of the APA GraphQL session client.

This package contains the data models, collaborator interfaces, exception
hierarchy and logging configuration used across the client.
"""
