"""Main CLI entry point for s3mount.

Provides command-line access to listing, downloading, uploading and syncing
objects of a mounted bucket.
"""

import asyncio
import os
import sys
from pathlib import Path
from typing import Optional

import click
import orjson
from rich.console import Console
from rich.table import Table

from s3mount.config import MountConfig

# Global console for Rich output
console = Console()


def find_bucket(ctx_bucket: Optional[str] = None) -> str:
    """Find the bucket to mount.

    Priority:
    1. Explicit --bucket/-b flag
    2. S3MOUNT_BUCKET environment variable

    Raises:
        click.ClickException: If no bucket is configured
    """
    bucket = ctx_bucket or os.environ.get("S3MOUNT_BUCKET")
    if not bucket:
        raise click.ClickException(
            "No bucket given. Use --bucket/-b or set S3MOUNT_BUCKET."
        )
    return bucket


async def build_config(ctx: click.Context) -> MountConfig:
    """Build a MountConfig from the environment and the global CLI options."""
    config = await MountConfig.from_env(find_bucket(ctx.obj.get("bucket")))
    if ctx.obj.get("mount_root"):
        config = config.with_mount_root(ctx.obj["mount_root"])
    if ctx.obj.get("refresh"):
        config = config.with_force_refresh(True)
    return config


def _format_size(size: int) -> str:
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


@click.group()
@click.option(
    "--bucket",
    "-b",
    help="Bucket to mount (default: S3MOUNT_BUCKET env var)",
)
@click.option(
    "--mount-root",
    "-m",
    type=click.Path(file_okay=False),
    help="Local directory to mirror buckets into (default: S3MOUNT_ROOT or .s3mount)",
)
@click.option(
    "--refresh", is_flag=True, help="Always download, even if a local copy exists"
)
@click.pass_context
def cli(ctx, bucket, mount_root, refresh):
    """s3mount CLI - Mirror object store buckets onto local disk.

    Use --bucket/-b to choose the bucket, or set the S3MOUNT_BUCKET environment variable.
    """
    ctx.ensure_object(dict)
    ctx.obj["bucket"] = bucket
    ctx.obj["mount_root"] = mount_root
    ctx.obj["refresh"] = refresh


@cli.command("ls")
@click.argument("prefix", default="")
@click.option("--json", "as_json", is_flag=True, help="Print entries as JSON")
@click.pass_context
def ls(ctx, prefix, as_json):
    """List objects under PREFIX (the whole bucket by default).

    Example:
        s3mount -b my-bucket ls reports/2024/
    """
    try:

        async def run():
            config = await build_config(ctx)
            return config.bucket, await config.list(prefix)

        bucket, entries = asyncio.run(run())

        if as_json:
            click.echo(
                orjson.dumps(
                    [
                        {"key": e.key, "size": e.size, "folder": e.folder}
                        for e in entries
                    ],
                    option=orjson.OPT_INDENT_2,
                ).decode()
            )
            return

        if not entries:
            console.print(f"[yellow]No objects found under '{prefix}'[/yellow]")
            return

        table = Table(title=f"{bucket}/{prefix} ({len(entries)})")
        table.add_column("Key", style="cyan")
        table.add_column("Size", justify="right", style="green")
        table.add_column("Type", style="magenta")
        for entry in entries:
            table.add_row(
                entry.key,
                "" if entry.folder else _format_size(entry.size),
                "folder" if entry.folder else "file",
            )
        console.print(table)

    except click.ClickException:
        raise
    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        sys.exit(1)


@cli.command("get")
@click.argument("key")
@click.pass_context
def get(ctx, key):
    """Download KEY into the mirror (unless cached) and print its local path.

    Example:
        s3mount -b my-bucket get reports/2024/summary.csv
    """
    try:

        async def run():
            config = await build_config(ctx)
            handle = await config.open(key)
            handle.close()
            return config.mirror_path(key)

        path = asyncio.run(run())
        click.echo(str(path))

    except click.ClickException:
        raise
    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        sys.exit(1)


@cli.command("put")
@click.argument("key")
@click.argument("source", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def put(ctx, key, source):
    """Upload SOURCE to KEY, keeping a copy in the mirror.

    Example:
        s3mount -b my-bucket put reports/2024/summary.csv ./summary.csv
    """
    try:
        data = source.read_bytes()

        async def run():
            config = await build_config(ctx)
            handle = await config.write(key, data)
            handle.close()
            return config.bucket

        bucket = asyncio.run(run())
        console.print(
            f"[green]✓[/green] Uploaded {source} to {bucket}/{key} ({_format_size(len(data))})"
        )

    except click.ClickException:
        raise
    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        sys.exit(1)


@cli.command("sync")
@click.argument("prefix", default="")
@click.option(
    "--concurrency", "-c", type=int, default=4, help="Downloads in flight at once"
)
@click.pass_context
def sync(ctx, prefix, concurrency):
    """Download every file under PREFIX into the mirror.

    Example:
        s3mount -b my-bucket sync reports/ -c 8
    """
    try:

        async def run():
            config = await build_config(ctx)
            return await config.sync(prefix, concurrency=concurrency)

        paths = asyncio.run(run())
        console.print(f"[green]✓[/green] Synced {len(paths)} files")
        for path in paths[:10]:
            console.print(f"  • {path}")
        if len(paths) > 10:
            console.print(f"  ... and {len(paths) - 10} more")

    except click.ClickException:
        raise
    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        sys.exit(1)


if __name__ == "__main__":
    cli()
