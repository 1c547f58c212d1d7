"""
k-shot CLI - device credential administration.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .auth.audit import token_fingerprint
from .auth.credentials import Credential, atomic_write_json
from .config import Config, ENV_TOKEN_SECRET
from .context import TrustContext
from .errors import (
    AlreadyInitialized,
    AuthError,
    CredentialCorrupt,
    TrustError,
    UnknownToken,
)
from .registry.identities import Role

console = Console()


def setup_logging(verbose: bool = False):
    """Set up logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[logging.StreamHandler()]
    )


def _abort(message: str, code: int = 1):
    console.print(f"[red]✗ {message}[/red]")
    sys.exit(code)


def _open(ctx: click.Context) -> TrustContext:
    try:
        trust = TrustContext.open(ctx.obj["config"])
    except TrustError as e:
        _abort(str(e))
    ctx.call_on_close(trust.close)
    return trust


def _status_style(status: str) -> str:
    return "green" if status == "active" else "red"


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--database', type=click.Path(dir_okay=False), help='Registry database file')
@click.pass_context
def main(ctx, verbose, database):
    """🔑 k-shot - device credential trust"""
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose
    setup_logging(verbose)

    config = Config.from_env()
    if database:
        config.database_path = Path(database)
    ctx.obj['config'] = config


@main.command()
@click.option('--label', '-l', help='Device label (generated if omitted)')
@click.pass_context
def init(ctx, label: Optional[str]):
    """Create the first identity and this device's credential."""
    trust = _open(ctx)

    try:
        result = trust.bootstrapper.bootstrap(device_label=label)
    except AlreadyInitialized:
        console.print("[yellow]⚠️  Identities already exist; bootstrap is only for an empty registry.[/yellow]")
        console.print("   Ask an administrator to reissue a credential for this device.")
        sys.exit(1)

    console.print("\n[bold green]✓ Device initialized[/bold green]\n")

    table = Table(show_header=False, box=None)
    table.add_column("Key", style="dim")
    table.add_column("Value")
    table.add_row("Identity", f"[cyan]{result.identity.identity_id}[/cyan]")
    table.add_row("Username", result.identity.username)
    table.add_row("Device", result.credential.device_label or "-")
    table.add_row("Credential", str(trust.store.path))
    console.print(table)
    console.print()


@main.command()
@click.pass_context
def whoami(ctx):
    """Show the identity this device authenticates as."""
    trust = _open(ctx)

    try:
        identity_id = trust.gate.resolve()
    except AuthError as e:
        _abort(f"{e.code}: {e}")

    identity = trust.identities.get(identity_id)
    console.print(f"[cyan]{identity_id}[/cyan]")
    if identity:
        console.print(f"   {identity.display_name} ({identity.username}, {identity.role})")


@main.command()
@click.pass_context
def status(ctx):
    """Show configuration and credential status."""
    trust = _open(ctx)
    check = trust.gate.check()

    table = Table(show_header=False, box=None)
    table.add_column("Key", style="dim")
    table.add_column("Value")
    table.add_row("Registry", str(trust.db.path))
    table.add_row("Credential", str(trust.store.path))
    table.add_row("Identities", str(trust.identities.count()))
    table.add_row("Credential present", "yes" if check.exists else "no")
    if check.exists:
        table.add_row("Signature valid", "yes" if check.signature_valid else "no")
        table.add_row("Active in registry", "yes" if check.valid_in_registry else "no")
        table.add_row("Identity", check.identity_id or "-")
    if check.error:
        table.add_row("Problem", f"[red]{check.error}[/red]")
    table.add_row("Setup completed", "yes" if trust.setup_flag.is_completed() else "no")

    console.print(Panel(table, title="k-shot device trust", expand=False))

    if trust.signer.is_insecure:
        console.print(
            f"[yellow]⚠️  {ENV_TOKEN_SECRET} is not set; credentials are signed with the "
            "development secret.[/yellow]"
        )


@main.command()
@click.argument('file', type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def verify(ctx, file: str):
    """Check a credential file's signature and registry status."""
    trust = _open(ctx)

    try:
        credential = Credential.from_json(Path(file).read_text(encoding="utf-8"))
    except CredentialCorrupt as e:
        _abort(f"Corrupt credential: {e}")

    console.print(f"Identity: [cyan]{credential.identity_id}[/cyan]")
    console.print(f"Token:    {token_fingerprint(credential.token)} (fingerprint)")

    if not trust.signer.verify(credential):
        _abort("Signature invalid")
    console.print("[green]✓ Signature valid[/green]")

    try:
        record = trust.registry.lookup(credential.token)
    except UnknownToken:
        _abort("Token not found in registry")

    if record.identity_id != credential.identity_id:
        _abort("Token belongs to a different identity")
    if record.is_revoked:
        _abort("Token revoked")
    console.print("[green]✓ Token active[/green]")


@main.command()
@click.option('--host', '-h', help='Host to bind to')
@click.option('--port', '-p', type=int, help='Port to bind to')
@click.option('--reload', is_flag=True, help='Enable auto-reload')
@click.pass_context
def serve(ctx, host: Optional[str], port: Optional[int], reload: bool):
    """Start the device trust API server."""
    from .api.server import run_server

    config = ctx.obj['config']
    if host:
        config.server.host = host
    if port:
        config.server.port = port

    console.print(f"\n[bold blue]🔑 Starting k-shot trust API[/bold blue]")
    console.print(f"   Listening on: http://{config.server.host}:{config.server.port}")
    console.print(f"   Press Ctrl+C to stop\n")

    run_server(config, reload=reload)


# ============ Identities ============

@main.group()
def identity():
    """Inspect identities."""


@identity.command('list')
@click.pass_context
def identity_list(ctx):
    """List identities."""
    trust = _open(ctx)

    table = Table(title="Identities")
    table.add_column("ID", style="cyan")
    table.add_column("Username")
    table.add_column("Role")
    table.add_column("Created", style="dim")
    for ident in trust.identities.list():
        table.add_row(ident.identity_id, ident.username, ident.role, ident.created_at)
    console.print(table)


@identity.command('promote')
@click.argument('identity_id')
@click.pass_context
def identity_promote(ctx, identity_id: str):
    """Give an identity the administrator role."""
    trust = _open(ctx)
    try:
        trust.identities.set_role(identity_id, Role.ADMIN)
    except TrustError as e:
        _abort(str(e))
    console.print(f"[green]✓ {identity_id} is now an administrator[/green]")


# ============ Tokens ============

@main.group()
def tokens():
    """Administer device tokens."""


def _write_or_print(credential: Credential, output: Optional[str]):
    if output:
        atomic_write_json(Path(output), credential.to_dict())
        console.print(f"Credential written to [cyan]{output}[/cyan]")
        console.print("[dim]Transfer it to the device and run: kshot tokens import FILE[/dim]")
    else:
        click.echo(credential.to_json())


@tokens.command('list')
@click.argument('identity_id')
@click.pass_context
def tokens_list(ctx, identity_id: str):
    """List an identity's tokens."""
    trust = _open(ctx)
    try:
        records = trust.admin.list_tokens(identity_id)
    except TrustError as e:
        _abort(str(e))

    table = Table(title=f"Device tokens for {identity_id}")
    table.add_column("Token")
    table.add_column("Fingerprint", style="dim")
    table.add_column("Device")
    table.add_column("Issued")
    table.add_column("Last used")
    table.add_column("Status")
    for r in records:
        table.add_row(
            r.token,
            r.fingerprint,
            r.device_label or "-",
            r.issued_at,
            r.last_used or "-",
            f"[{_status_style(r.status)}]{r.status}[/{_status_style(r.status)}]",
        )
    console.print(table)


@tokens.command('revoke')
@click.argument('identity_id')
@click.argument('token')
@click.pass_context
def tokens_revoke(ctx, identity_id: str, token: str):
    """Revoke one token."""
    trust = _open(ctx)
    try:
        trust.admin.revoke_token(identity_id, token)
    except TrustError as e:
        _abort(f"{e.code}: {e}")
    console.print("[green]✓ Token revoked[/green]")


@tokens.command('reissue')
@click.argument('identity_id')
@click.option('--label', '-l', help='Label for the new device')
@click.option('--keep-existing', is_flag=True, help='Do not revoke other active tokens')
@click.option('--output', '-o', type=click.Path(dir_okay=False), help='Write the credential file here')
@click.pass_context
def tokens_reissue(ctx, identity_id: str, label: Optional[str], keep_existing: bool, output: Optional[str]):
    """Issue a new credential for an identity."""
    trust = _open(ctx)
    try:
        credential = trust.admin.reissue_token(
            identity_id, device_label=label, revoke_existing=not keep_existing
        )
    except TrustError as e:
        _abort(str(e))
    _write_or_print(credential, output)


@tokens.command('export')
@click.argument('identity_id')
@click.argument('token')
@click.option('--output', '-o', type=click.Path(dir_okay=False), help='Write the credential file here')
@click.pass_context
def tokens_export(ctx, identity_id: str, token: str, output: Optional[str]):
    """Export the credential file of an existing token."""
    trust = _open(ctx)
    try:
        credential = trust.admin.export_credential(identity_id, token)
    except TrustError as e:
        _abort(f"{e.code}: {e}")
    _write_or_print(credential, output)


@tokens.command('import')
@click.argument('file', type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def tokens_import(ctx, file: str):
    """Install a transferred credential on this device."""
    trust = _open(ctx)
    try:
        credential = trust.admin.import_credential(Path(file).read_bytes())
    except TrustError as e:
        _abort(f"{e.code}: {e}")
    console.print(f"[green]✓ Credential imported for[/green] [cyan]{credential.identity_id}[/cyan]")
    console.print(f"   Saved to {trust.store.path}")


if __name__ == "__main__":
    main()
