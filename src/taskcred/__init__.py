"""taskcred -- credential discovery, authorization and storage for Remember The Milk.

This package obtains a verified RTM auth token and hands an authorized
:class:`~taskcred.client.ServiceClient` to the rest of an application. It
searches environment variables and well-known token files, verifies every
candidate with the service, falls back to the interactive frob/token
handshake, and persists the result in the OS keyring or an owner-only file.

Typical workflow::

    taskcred auth login     # authorize once
    taskcred auth status    # verify the stored token

Modules:
    app: Typer application and CLI entry point.
    models: Pydantic models shared across the entire package.
    config: XDG-aware configuration and settings resolution.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.1.0"
