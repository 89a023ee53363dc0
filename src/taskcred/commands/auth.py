"""Auth commands -- inspect, obtain and remove the RTM credential.

Provides the ``taskcred auth`` sub-command group. Every command builds an
:class:`~taskcred.auth.manager.AuthManager` from the resolved settings, so
environment variables, config files and the ``--no-keyring`` flag all apply.

Typical workflow::

    taskcred auth status            # is there a valid token anywhere?
    taskcred auth login             # authorize in the browser
    taskcred auth show              # inspect the stored record
    taskcred auth diagnose          # troubleshoot the OS keyring
"""

from __future__ import annotations

import threading
import webbrowser
from typing import Any, Optional

import typer

from taskcred.auth.manager import AuthManager, create_default_manager
from taskcred.config import resolve_settings
from taskcred.exceptions import (
    CredentialNotFoundError,
    TaskcredError,
    TicketRejectedError,
)
from taskcred.exit_codes import EXIT_NOT_FOUND
from taskcred.models import AuthStatus, Permission
from taskcred.output import error, get_output, info, success, suggest, warning


auth_app = typer.Typer(no_args_is_help=True)


def _build_manager(ctx: typer.Context) -> AuthManager:
    """Resolve settings from the context flags and build a manager."""
    obj: dict[str, Any] = ctx.obj or {}
    overrides: dict[str, Any] = {}
    if obj.get("no_keyring"):
        overrides["use_keyring"] = False
    return create_default_manager(resolve_settings(**overrides))


def _status_record(status: AuthStatus) -> dict[str, Any]:
    return {
        "authenticated": status.authenticated,
        "username": status.username or None,
        "user_id": status.user_id or None,
        "source": status.source,
        "storage": status.storage,
        "auth_url": status.auth_url,
        "frob": status.frob,
    }


def _fail(exc: TaskcredError) -> typer.Exit:
    error(str(exc))
    return typer.Exit(code=exc.exit_code)


@auth_app.command("status")
def auth_status(ctx: typer.Context) -> None:
    """Discover and verify a credential, then print the authentication status.

    When no valid credential exists, an authorization URL is printed and the
    command exits with code 4.

    Example::

        taskcred auth status
        taskcred --json auth status
    """
    manager = _build_manager(ctx)
    try:
        status = manager.ensure_authenticated()
    except TaskcredError as exc:
        raise _fail(exc) from None
    finally:
        manager.close()

    get_output().format_record(_status_record(status))
    if not status.authenticated:
        if status.message:
            info(status.message)
        if status.frob:
            suggest(f"Approve the URL above, then run: taskcred auth complete {status.frob}")
        raise typer.Exit(code=EXIT_NOT_FOUND)


@auth_app.command("login")
def auth_login(
    ctx: typer.Context,
    perms: Optional[Permission] = typer.Option(
        None, "--perms", "-p", help="Permission to request: read, write or delete."
    ),
    open_browser: bool = typer.Option(
        True, "--open/--no-open", help="Open the authorization URL in a browser."
    ),
    wait: bool = typer.Option(
        True, "--wait/--no-wait", help="Wait for approval and finish in one step."
    ),
) -> None:
    """Authorize taskcred with Remember The Milk.

    Reuses a valid existing credential when one is found. Otherwise prints
    the authorization URL, waits for you to approve it, and stores the
    resulting token.

    Example::

        taskcred auth login --perms delete
        taskcred auth login --no-wait   # finish later with 'auth complete'
    """
    obj: dict[str, Any] = ctx.obj or {}
    manager = _build_manager(ctx)
    try:
        if not obj.get("force"):
            status = manager.ensure_authenticated(permission=perms)
            if status.authenticated:
                success(f"Already authenticated as {status.username} ({status.source}).")
                return
            ticket_url, frob, reason = status.auth_url, status.frob, status.message
        else:
            ticket = manager.start_authorization(perms)
            ticket_url, frob, reason = ticket.url, ticket.frob, ""

        if not ticket_url or not frob:
            error(reason or "Could not start authorization.")
            raise typer.Exit(code=EXIT_NOT_FOUND)

        output = get_output()
        info("Open this URL to authorize taskcred:")
        output.url(ticket_url)
        if open_browser:
            webbrowser.open(ticket_url)

        if not wait or obj.get("no_input"):
            suggest(f"After approving, run: taskcred auth complete {frob}")
            return

        typer.prompt("Press Enter once you have approved access", default="", show_default=False)
        status = manager.complete_authorization(frob, cancel=threading.Event())
    except TicketRejectedError as exc:
        error(str(exc))
        suggest("The authorization was not approved or has expired. Run 'taskcred auth login' again.")
        raise typer.Exit(code=exc.exit_code) from None
    except TaskcredError as exc:
        raise _fail(exc) from None
    finally:
        manager.close()

    success(f"Authenticated as {status.username}.")
    info(f"Credential stored in {status.storage}.")


@auth_app.command("complete")
def auth_complete(
    ctx: typer.Context,
    frob: str = typer.Argument(help="Frob printed by 'taskcred auth login --no-wait'."),
) -> None:
    """Redeem an approved frob for a permanent token and store it.

    Example::

        taskcred auth complete 0a56717c3561e53584f292bb7081a533c197270c
    """
    manager = _build_manager(ctx)
    try:
        status = manager.complete_authorization(frob)
    except TicketRejectedError as exc:
        error(str(exc))
        suggest("Start over with: taskcred auth login")
        raise typer.Exit(code=exc.exit_code) from None
    except TaskcredError as exc:
        raise _fail(exc) from None
    finally:
        manager.close()

    success(f"Authenticated as {status.username}.")
    info(f"Credential stored in {status.storage}.")


@auth_app.command("logout")
def auth_logout(ctx: typer.Context) -> None:
    """Delete the stored credential.

    Token files found by discovery and environment variables are left alone.

    Example::

        taskcred auth logout --force
    """
    obj: dict[str, Any] = ctx.obj or {}
    manager = _build_manager(ctx)
    try:
        store = manager.store
        if not obj.get("force"):
            confirmed = typer.confirm(f"Delete the credential stored in {store.description}?")
            if not confirmed:
                info("Cancelled.")
                raise typer.Exit()
        manager.logout()
    except TaskcredError as exc:
        raise _fail(exc) from None
    finally:
        manager.close()

    success(f"Removed credential from {store.description}.")


@auth_app.command("show")
def auth_show(
    ctx: typer.Context,
    reveal: bool = typer.Option(False, "--reveal", help="Print the full token."),
) -> None:
    """Print the stored credential record (token masked by default).

    Example::

        taskcred auth show
    """
    manager = _build_manager(ctx)
    try:
        store = manager.store
        record = store.get_record()
    except TaskcredError as exc:
        raise _fail(exc) from None
    finally:
        manager.close()

    if record is None:
        error(f"No credential stored in {store.description}.")
        suggest("Run: taskcred auth login")
        raise typer.Exit(code=CredentialNotFoundError.exit_code)

    data = record.model_dump(mode="json", by_alias=True)
    if not reveal:
        data["token"] = record.masked_token()
    data["store"] = store.description
    get_output().format_record(data)


@auth_app.command("diagnose")
def auth_diagnose(
    ctx: typer.Context,
    network: bool = typer.Option(
        True, "--network/--no-network", help="Also check the connection to Remember The Milk."
    ),
) -> None:
    """Troubleshoot the OS keyring and the connection to Remember The Milk.

    The keyring is tested with a disposable set/get/delete cycle (skipped
    with ``--no-keyring``). The network check then verifies internet access,
    the REST endpoint, the API key and shared secret, and the credential.

    Example::

        taskcred auth diagnose
        taskcred auth diagnose --no-network
    """
    from taskcred.auth.diagnostics import STEP_AUTH, all_passed, diagnostic_advice, run_self_test

    manager = _build_manager(ctx)
    output = get_output()
    healthy = True
    try:
        if manager.settings.use_keyring:
            secure = manager.secure_store()
            results = run_self_test(secure)
            info(f"Keyring backend: {type(secure.backend).__name__}")
            output.print_table(
                ["step", "success", "error"],
                [[r.operation, "yes" if r.success else "no", r.error or ""] for r in results],
                title="Keyring self test",
            )
            advice = diagnostic_advice(results)
            if all_passed(results):
                success(advice)
            else:
                warning(advice)
                healthy = False
        else:
            info("Keyring disabled; skipping the keyring self test.")

        if network:
            checks = manager.connectivity_check()
            rows = [
                [c.name, "yes" if c.success else "no", " ".join(filter(None, [c.description, c.error]))]
                for c in checks
            ]
            output.print_table(["check", "success", "detail"], rows, title="Connectivity")
            if any(not c.success for c in checks if c.name != STEP_AUTH):
                warning("Remember The Milk is not reachable with the current settings.")
                healthy = False
    except TaskcredError as exc:
        raise _fail(exc) from None
    finally:
        manager.close()

    if not healthy:
        raise typer.Exit(code=1)
