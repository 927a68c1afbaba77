# mcp_bridge/cli/main_cli.py
import asyncio
from typing import Dict

import typer
from typing_extensions import Annotated

from . import config  # noqa: F401  loads .env

app = typer.Typer(
    name="mcp-bridge",
    help="MCP OAuth Bridge maintenance commands.",
    no_args_is_help=True
)


@app.callback()
def main_callback():
    """
    MCP OAuth Bridge CLI.
    Commands operate directly on the configured storage backend.
    """
    pass


def _build_cipher():
    from ..settings import settings, validate_encryption_secret
    from ..utils.security import TokenCipher

    try:
        validate_encryption_secret()
    except ValueError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    return TokenCipher(settings.encryption_secret, settings.encryption_kdf_iterations)


async def _close_storage() -> None:
    from ..settings import settings
    from ..storage.sqlite_base import close_sqlite_db_connection

    if settings.storage_backend == "sqlite":
        await close_sqlite_db_connection()


async def _revoke(bridge_token: str) -> bool:
    from ..vault import get_credential_vault

    vault = await get_credential_vault(_build_cipher())
    try:
        return await vault.delete(bridge_token)
    finally:
        await vault.teardown()
        await _close_storage()


async def _cleanup() -> Dict[str, int]:
    from ..oauth.storage import get_auth_code_store, get_auth_session_store
    from ..ratelimit import get_rate_limiter
    from ..storage.janitor import StorageJanitor
    from ..vault import get_credential_vault

    session_store = await get_auth_session_store()
    code_store = await get_auth_code_store()
    rate_limiter = await get_rate_limiter()
    vault = await get_credential_vault(_build_cipher())
    janitor = StorageJanitor(
        {"oauth_sessions": session_store, "auth_codes": code_store, "rate_limits": rate_limiter},
        vault=vault,
    )
    try:
        return await janitor.run_once(include_vault=True)
    finally:
        for store in (vault, rate_limiter, code_store, session_store):
            await store.teardown()
        await _close_storage()


@app.command("generate-secret")
def generate_secret():
    """Print a random value suitable for ENCRYPTION_SECRET."""
    from ..utils.security import generate_encryption_secret

    typer.echo(generate_encryption_secret())


@app.command("revoke")
def revoke(
    bridge_token: Annotated[
        str,
        typer.Argument(help="The bridge token whose stored provider credential should be deleted.")
    ]
):
    """Delete the vault record for a bridge token. The client has to authorize again."""
    if asyncio.run(_revoke(bridge_token)):
        typer.secho("Bridge token revoked.", fg=typer.colors.GREEN)
    else:
        typer.secho("No credential found for that bridge token.", fg=typer.colors.YELLOW)
        raise typer.Exit(code=1)


@app.command("cleanup")
def cleanup():
    """Run one janitor pass, removing every expired record."""
    removed = asyncio.run(_cleanup())
    for name, count in removed.items():
        typer.echo(f"{name}: {count} removed")
    typer.secho(f"Total: {sum(removed.values())} expired record(s) removed.", fg=typer.colors.GREEN)


def cli_entry_point():
    """Entry point function for console script registration in pyproject.toml"""
    app()


if __name__ == "__main__":
    cli_entry_point()
