"""HTTP client module for taskcred.

Provides :class:`ServiceClient`, a blocking client for the Remember The Milk
REST endpoint that wraps :mod:`httpx` with parameter signing, auth token
installation, and error mapping.

Example::

    from taskcred.client import ServiceClient

    with ServiceClient(settings) as client:
        client.set_auth_token(token)
        grant = client.check_token()
"""

from taskcred.client.sync_client import TRANSIENT_ERRORS, ServiceClient

__all__ = ["ServiceClient", "TRANSIENT_ERRORS"]
