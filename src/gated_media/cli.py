from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from pathlib import Path
from typing import Optional

import typer
from key_server.app import run

from . import producer
from .client.consumer import EnvelopeConsumer, FileRenderer
from .client.key_source import FileKeySource, RemoteKeySource
from .client.ownership import TokenOwnershipChecker
from .client.remote_proxy import RemoteProxyFetcher
from .config import Settings, load_settings
from .encryption import envelope
from .encryption.key_material import load_key_material
from .errors import ConfigurationFailure, GatedMediaError
from .utils import media_io

logger = logging.getLogger(__name__)

app = typer.Typer(help="Encrypt, serve and play token-gated media.")


@app.callback()
def main_callback(
    verbose: int = typer.Option(0, "-v", "--verbose", count=True, help="Increase verbosity"),
):
    log_level = logging.WARNING
    if verbose >= 2:
        log_level = logging.DEBUG
    elif verbose == 1:
        log_level = logging.INFO
    logging.basicConfig(level=log_level, format="%(levelname)s: %(message)s")


@app.command("encrypt")
def encrypt(
    source: str = typer.Argument(..., help="Path to the media file to encrypt"),
    output: str = typer.Option(producer.DEFAULT_ENVELOPE_PATH, "-o", "--output", help="Path to write the envelope"),
    keyfile: str = typer.Option(producer.DEFAULT_KEYFILE_PATH, "-k", "--keyfile", help="Path to write the key material"),
):
    """Encrypt a media file into an envelope plus a separate key file.

    Publish the envelope to IPFS; keep the key file on a trusted channel.
    """
    source_path = Path(source)
    if not source_path.is_file():
        raise typer.BadParameter(f"Input file not found: {source}")

    media_kind = media_io.detect_media_kind(str(source_path))
    typer.echo(f"Encrypting {media_kind} file: {source_path}")
    try:
        producer.produce_file(str(source_path), output, keyfile)
    except (OSError, ValueError, GatedMediaError) as e:
        typer.echo(f"Encryption failed: {e}", err=True)
        raise typer.Exit(code=1)
    typer.echo("Video encrypted successfully!")
    typer.echo(f"Output files: '{output}' and '{keyfile}'")


@app.command("decrypt")
def decrypt(
    envelope_file: str = typer.Argument(..., help="Path to the envelope file"),
    keyfile: str = typer.Argument(..., help="Path to the key-material JSON file"),
    output: str = typer.Option("", "-o", "--output", help="Path to write decrypted media"),
):
    """Decrypt a local envelope with its key file."""
    envelope_path = Path(envelope_file)
    if not envelope_path.is_file():
        raise typer.BadParameter(f"Envelope file not found: {envelope_file}")
    key_path = Path(keyfile)
    if not key_path.is_file():
        raise typer.BadParameter(f"Key file not found: {keyfile}")

    out_path = Path(output) if output else envelope_path.with_suffix(".dec")
    try:
        material = load_key_material(str(key_path))
        env = envelope.Envelope.from_bytes(media_io.read_bytes(str(envelope_path)))
        if env.nonce != material.nonce:
            logger.warning("Nonce in key file does not match the envelope")
        plaintext = envelope.decode(env, material.key)
    except (OSError, GatedMediaError) as e:
        typer.echo(f"Decryption failed: {e}", err=True)
        raise typer.Exit(code=1)
    try:
        media_io.write_bytes(str(out_path), plaintext)
    except OSError as e:
        typer.echo(f"Could not write {out_path}: {e}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Decryption complete: {out_path}")


def _load_settings_or_exit() -> Settings:
    try:
        return load_settings()
    except ConfigurationFailure as e:
        typer.echo(f"ERROR: {e}", err=True)
        raise typer.Exit(code=1)


@app.command("fetch")
def fetch(
    cid: str = typer.Argument(..., help="IPFS content identifier of the envelope"),
    proxy_url: str = typer.Option("http://127.0.0.1:8080/ipfsProxy", "--proxy-url", help="Retrieval proxy endpoint"),
    key_url: str = typer.Option("http://127.0.0.1:8080/getEncryptionKey", "--key-url", help="Key endpoint"),
    keyfile: Optional[str] = typer.Option(None, "-k", "--keyfile", help="Read key material from a file instead of --key-url"),
    wallet: Optional[str] = typer.Option(None, "--wallet", help="Require this wallet to own the gating token"),
    output: str = typer.Option("decryptedVideo.mp4", "-o", "--output", help="Path to write decrypted media"),
):
    """Fetch an envelope through the proxy, retrieve its key and decrypt it."""
    settings = _load_settings_or_exit()
    key_source = (
        FileKeySource(keyfile) if keyfile
        else RemoteKeySource(key_url, token=settings.key_access_token)
    )
    consumer = EnvelopeConsumer(RemoteProxyFetcher(proxy_url), key_source)
    renderer = FileRenderer(output)

    if wallet:
        if not settings.rpc_url or not settings.nft_mint:
            typer.echo("ERROR: GATED_MEDIA_RPC_URL and GATED_MEDIA_NFT_MINT must be set to check ownership.", err=True)
            raise typer.Exit(code=1)
        checker = TokenOwnershipChecker(settings.rpc_url, settings.nft_mint)
        ok, message = asyncio.run(consumer.gate_and_play(wallet, cid, renderer, checker))
    else:
        ok, message = asyncio.run(consumer.play(cid, renderer))

    if not ok:
        typer.echo(message, err=True)
        raise typer.Exit(code=1)
    typer.echo(f"{message} Written to {output}")


@app.command("serve")
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Interface to bind"),
    port: Optional[int] = typer.Option(None, "--port", help="Port to bind"),
):
    """Run the retrieval proxy and key endpoint."""
    settings = _load_settings_or_exit()
    overrides = {}
    if host:
        overrides["host"] = host
    if port:
        overrides["port"] = port
    if overrides:
        settings = replace(settings, **overrides)
    try:
        level = settings.log_level_value
    except ConfigurationFailure as e:
        typer.echo(f"ERROR: {e}", err=True)
        raise typer.Exit(code=1)
    logging.getLogger().setLevel(min(logging.getLogger().level, level))
    typer.echo(f"Serving on http://{settings.host}:{settings.port} (gateway {settings.gateway_url})")
    run(settings)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
