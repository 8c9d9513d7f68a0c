"""Storage interfaces, record models and AWS clients.

This package holds the key-value and blob store protocols with their
in-memory and AWS-backed implementations, plus the record types stored in
them.

Example:
    Use in a service or FastAPI dependency:
        >>> from featurestore.db import database
        >>> store = database.get_key_value_store(settings)
"""
