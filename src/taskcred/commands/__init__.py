"""Built-in CLI sub-commands for taskcred.

* :mod:`~taskcred.commands.auth` -- discover, authorize, inspect and remove
  the RTM credential, and diagnose the OS keyring.

Each module exports a :class:`typer.Typer` sub-application registered on the
root app in :mod:`taskcred.app`.
"""
