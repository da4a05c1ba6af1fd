"""The `artghos` command-line interface."""

import asyncio
import importlib.metadata
from pathlib import Path

import click

from .config import ArtghosConfig, load_config
from .exceptions import ArtghosError
from .loader import LoaderContext
from .packaging.builder import BundleBuilder, default_output_path
from .packaging.extractor import BundleExtractor
from .packaging.reader import BundleReader
from .telemetry import configure_logging

try:
    __version__ = importlib.metadata.version("artghos")
except importlib.metadata.PackageNotFoundError:
    __version__ = "0.0.0-dev"


@click.group(context_settings=dict(help_option_names=["-h", "--help"]))
@click.version_option(
    __version__,
    "-V",
    "--version",
    prog_name="artghos",
    message="%(prog)s version %(version)s",
)
@click.option(
    "--manifest",
    "pyproject_toml_path",
    default="pyproject.toml",
    type=click.Path(dir_okay=False, resolve_path=True),
    help="Path to the pyproject.toml holding a [tool.artghos] table.",
)
@click.option("--log-level", default=None, help="Log level (default: $ARTGHOS_LOG_LEVEL or INFO).")
@click.pass_context
def cli(ctx: click.Context, pyproject_toml_path: str, log_level: str | None) -> None:
    """Sealed bundle packaging, verification and loading."""
    configure_logging(log_level)
    try:
        ctx.obj = load_config(Path(pyproject_toml_path))
    except ArtghosError as e:
        raise click.UsageError(str(e)) from e


@cli.command("pack")
@click.argument(
    "source_dir", type=click.Path(exists=True, file_okay=False, resolve_path=True)
)
@click.option("--out", type=click.Path(dir_okay=False, resolve_path=True), help="Output bundle path.")
@click.option("--force-pack", is_flag=True, help="Pack even if the content scanner rejects files.")
@click.pass_obj
def pack_command(
    config: ArtghosConfig, source_dir: str, out: str | None, force_pack: bool
) -> None:
    """Packs SOURCE_DIR into a signed bundle."""
    click.echo(f"📦 Packing '{source_dir}'...")
    output_path = Path(out) if out else default_output_path(Path(source_dir), config.bundle_dir)
    try:
        builder = BundleBuilder(
            Path(source_dir),
            trusted_packages=config.trusted_packages,
            force_pack=force_pack,
            exclude=config.exclude,
            reject_threshold=config.reject_threshold,
            key_file=config.key_file,
        )
        builder.build_bundle(output_path)
    except ArtghosError as e:
        click.secho(f"❌ Packing failed:\n{e}", fg="red", err=True)
        raise click.Abort() from e

    size_kb = output_path.stat().st_size / 1024
    click.secho(f"✅ Bundle created: {output_path}", fg="green")
    click.echo(f"  Size: {size_kb:.2f} KB")


@cli.command("unpack")
@click.argument("bundle", type=click.Path(exists=True, dir_okay=False, resolve_path=True))
@click.argument("dest", type=click.Path(file_okay=False, resolve_path=True))
@click.option("--force-unpack", is_flag=True, help="Accept legacy bundles and rejected files.")
@click.option(
    "--accept-invalid-signature",
    is_flag=True,
    help="Open bundles whose signature is missing or does not match.",
)
@click.pass_obj
def unpack_command(
    config: ArtghosConfig,
    bundle: str,
    dest: str,
    force_unpack: bool,
    accept_invalid_signature: bool,
) -> None:
    """Verifies BUNDLE and extracts it into DEST (DEST is replaced)."""
    click.echo(f"📂 Unpacking '{bundle}'...")
    try:
        extractor = BundleExtractor(
            trusted_packages=config.trusted_packages,
            force_unpack=force_unpack,
            accept_invalid_signature=accept_invalid_signature,
            reject_threshold=config.reject_threshold,
            key_file=config.key_file,
        )
        metadata = extractor.extract(Path(bundle), Path(dest))
    except ArtghosError as e:
        click.secho(f"❌ Unpacking failed:\n{e}", fg="red", err=True)
        raise click.Abort() from e

    click.secho(
        f"✅ Extracted {metadata.file_count} file(s) of '{metadata.package_name}' into {dest}",
        fg="green",
    )


@cli.command("verify")
@click.argument("bundle", type=click.Path(exists=True, dir_okay=False, resolve_path=True))
@click.pass_obj
def verify_command(config: ArtghosConfig, bundle: str) -> None:
    """Checks the signature of BUNDLE."""
    click.echo(f"🔍 Verifying bundle '{bundle}'...")
    try:
        reader = BundleReader(Path(bundle))
        click.echo(reader.get_info())
        verified = reader.verify(key_file=config.key_file)
    except ArtghosError as e:
        click.secho(f"❌ Verification failed: {e}", fg="red", err=True)
        raise click.Abort() from e

    if not reader.is_signed:
        click.secho("❌ Verification failed: bundle has no signature present.", fg="red", err=True)
        raise click.Abort()
    if not verified:
        click.secho("❌ Verification failed: signature present but invalid.", fg="red", err=True)
        raise click.Abort()
    click.secho("✅ Signature verification successful.", fg="green")


@cli.command("info")
@click.argument("bundle", type=click.Path(exists=True, dir_okay=False, resolve_path=True))
def info_command(bundle: str) -> None:
    """Prints the metadata of BUNDLE without verifying it."""
    try:
        click.echo(BundleReader(Path(bundle)).get_info())
    except ArtghosError as e:
        click.secho(f"❌ Could not read bundle: {e}", fg="red", err=True)
        raise click.Abort() from e


@cli.command("load")
@click.argument("name")
@click.option("--force-unpack", is_flag=True, help="Accept legacy bundles and rejected files.")
@click.option(
    "--accept-invalid-signature",
    is_flag=True,
    help="Open bundles whose signature is missing or does not match.",
)
@click.pass_obj
def load_command(
    config: ArtghosConfig, name: str, force_unpack: bool, accept_invalid_signature: bool
) -> None:
    """Loads the entry point of bundle NAME and prints the loaded handle."""
    with LoaderContext.from_config(
        config,
        force_unpack=force_unpack,
        accept_invalid_signature=accept_invalid_signature,
        register_atexit=False,
    ) as context:
        try:
            handle = asyncio.run(context.load_async(name))
        except ArtghosError as e:
            click.secho(f"❌ Load failed: {e}", fg="red", err=True)
            raise click.Abort() from e
        click.secho(f"✅ Loaded {context.resolve_path(name)}", fg="green")
        click.echo(repr(handle))


main = cli
