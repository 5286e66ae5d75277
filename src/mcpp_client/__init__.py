"""MCPP Client - privacy-preserving routing of sensitive tool data.

This package lets a language model work with placeholders instead of the
sensitive values returned by MCPP servers. Placeholders are resolved through
the server that produced them, under an explicit usage context, and only
after the user consented where a server asks for it.

Core Idea:
    Every tool call is recorded with the server that handled it, so that
    placeholders in model output can be grouped per owning server and
    resolved with one batched request each.

Example:
    >>> from mcpp_client.session import McppSession
    >>> session = McppSession()
"""

__version__ = "0.1.0"
__license__ = "MIT"

__all__ = ["__version__"]
