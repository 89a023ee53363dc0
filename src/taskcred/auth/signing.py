"""Request signing for the Remember The Milk API.

Every call to the REST endpoint and every authorization URL carries an
``api_sig`` parameter: the MD5 hex digest of the shared secret followed by
each parameter name and value, concatenated in ascending order of name with
no separators. The service recomputes the digest and rejects mismatches, so
the output must match byte for byte.

MD5 is mandated by the remote protocol; it is not used for anything else.
"""

from __future__ import annotations

import hashlib
from collections.abc import Mapping


def signature_base(shared_secret: str, params: Mapping[str, str]) -> str:
    """Return the exact string that is hashed to produce ``api_sig``."""
    parts = [shared_secret]
    for key in sorted(params):
        parts.append(key)
        parts.append(str(params[key]))
    return "".join(parts)


def sign_params(shared_secret: str, params: Mapping[str, str]) -> str:
    """Compute the ``api_sig`` value for *params*.

    The ``api_sig`` key itself must not be present in *params*.

    Args:
        shared_secret: The application's shared secret.
        params: Request parameters, in any order.

    Returns:
        Lowercase hex MD5 digest.

    Example::

        >>> sign_params("BANANAS", {"yxz": "foo", "feg": "bar", "abc": "baz"})
        '82044aae4dd676094f23f1ec152159ba'
    """
    base = signature_base(shared_secret, params)
    return hashlib.md5(base.encode("utf-8")).hexdigest()
