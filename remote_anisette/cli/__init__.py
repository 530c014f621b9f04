import json
import logging
from pathlib import Path
from typing import Optional

import anyio
import typer
from rich.logging import RichHandler
from typing_extensions import Annotated

from remote_anisette import DeviceIdentity
from remote_anisette.device import DEFAULT_URL
from remote_anisette.exceptions import AnisetteError, DecodeError

logging.basicConfig(level=logging.INFO, handlers=[RichHandler()], format="%(message)s")

app = typer.Typer()

UrlOption = Annotated[
    str, typer.Option(envvar="ANISETTE_URL", help="anisette v3 server to use")
]
VerboseOption = Annotated[bool, typer.Option("--verbose", "-v", help="Log debug output")]


def load_identity(path: Path) -> Optional[DeviceIdentity]:
    try:
        return DeviceIdentity.from_json(path.read_text())
    except (OSError, DecodeError) as e:
        logging.debug(f"No usable identity in {path}: {e}")
        return None


def save_identity(identity: DeviceIdentity, path: Path):
    path.write_text(identity.to_json())
    logging.info(f"Saved identity to {path}")


def _configure_logging(verbose: bool):
    logging.getLogger().setLevel(logging.DEBUG if verbose else logging.INFO)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _run(coroutine, *args):
    try:
        return anyio.run(coroutine, *args)
    except AnisetteError as e:
        logging.error(f"{type(e).__name__}: {e}")
        raise typer.Exit(code=1)


async def _provision(identity: DeviceIdentity) -> DeviceIdentity:
    await identity.provision()
    return identity


async def _fetch_headers(identity: DeviceIdentity) -> dict[str, str]:
    return await identity.fetch_headers()


@app.command()
def headers(
    path: Annotated[
        Optional[Path],
        typer.Argument(help="identity file, created and provisioned if missing"),
    ] = None,
    url: UrlOption = DEFAULT_URL,
    verbose: VerboseOption = False,
):
    """
    Print anisette headers for the identity stored at PATH
    """
    _configure_logging(verbose)
    identity = load_identity(path) if path is not None else None
    if identity is None:
        identity = DeviceIdentity(url=url)
    if not identity.provisioned:
        identity = _run(_provision, identity)
        if path is not None:
            save_identity(identity, path)
    typer.echo(json.dumps(_run(_fetch_headers, identity), indent=4))


@app.command()
def provision(
    path: Annotated[Path, typer.Argument(help="where to save the identity")],
    url: UrlOption = DEFAULT_URL,
    force: Annotated[
        bool, typer.Option(help="Replace an identity that is already provisioned")
    ] = False,
    verbose: VerboseOption = False,
):
    """
    Create and provision a new identity, saving it to PATH
    """
    _configure_logging(verbose)
    existing = load_identity(path)
    if existing is not None and existing.provisioned and not force:
        logging.error(f"{path} already holds a provisioned identity, use --force")
        raise typer.Exit(code=1)
    identity = _run(_provision, DeviceIdentity(url=url))
    save_identity(identity, path)
    logging.info(f"Device ID: {identity.device_id}")


def main():
    app()


if __name__ == "__main__":
    main()
