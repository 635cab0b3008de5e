"""Click CLI commands for key provisioning and token housekeeping."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import click

from user_onboard import database
from user_onboard.config import get_settings
from user_onboard.errors import OnboardError
from user_onboard.runtime import build_runtime
from user_onboard.services.key_material import KeyMaterial
from user_onboard.services.logging_service import configure_logging


@click.group()
@click.option("--log-level", default=None, help="Override the configured log level.")
def cli(log_level: str | None) -> None:
    """User onboarding service administration."""
    configure_logging(log_level or get_settings().log_level)


@cli.command("generate-keys")
@click.option("--private-key", "private_key_path", default=None, help="Output path of the private key PEM.")
@click.option("--public-key", "public_key_path", default=None, help="Output path of the public key PEM.")
@click.option("--key-size", default=2048, type=click.IntRange(min=2048), help="RSA modulus size in bits.")
@click.option("--force", is_flag=True, help="Overwrite existing key files.")
def generate_keys(
    private_key_path: str | None,
    public_key_path: str | None,
    key_size: int,
    force: bool,
) -> None:
    """Generate the RSA key pair used to sign tokens."""
    settings = get_settings()
    private_key_path = private_key_path or settings.jwt_private_key_path
    public_key_path = public_key_path or settings.jwt_public_key_path

    existing = [p for p in (private_key_path, public_key_path) if Path(p).exists()]
    if existing and not force:
        click.echo(f"Refusing to overwrite {', '.join(existing)} (use --force)", err=True)
        sys.exit(1)

    keys = KeyMaterial.generate(key_size=key_size)
    keys.write(private_key_path, public_key_path)

    click.echo(f"Private key: {private_key_path}")
    click.echo(f"Public key:  {public_key_path}")


@cli.command("purge-tokens")
def purge_tokens() -> None:
    """Delete expired refresh tokens and revoked ones past retention."""
    settings = get_settings()
    if settings.use_memory_store:
        click.echo("Memory store is per-process; nothing to purge.")
        return

    try:
        deleted = asyncio.run(_purge(settings))
    except OnboardError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(2)

    click.echo(f"Purged {deleted} refresh token record(s).")


async def _purge(settings) -> int:
    runtime = build_runtime(settings)
    await database.init_database()
    try:
        return await runtime.auth.purge_stale_tokens()
    finally:
        await database.close_database()


if __name__ == "__main__":
    cli()
