import sys, asyncio, logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import click, httpx
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler

from ..adapters.coverage_local import LocalManifestCoverage
from ..adapters.manifest_jsonl import JSONLManifest
from ..adapters.rpc_httpx import HbaseRestStore, make_client
from ..adapters.uid_httpx import RestUidResolver
from ..application.query import parse_query
from ..application.use_cases import batch_delete, dump_series
from ..application.utils import _now_ts_str
from ..config import StoreConfig, load_config
from ..domain.errors import SeriesDumpError
from ..ports.store import StoreClient
from ..ports.uid import UidResolver

console = Console(stderr=True)

USAGE = (
    "Usage: seriesdump [--import|--delete] START-DATE [END-DATE] query [queries...]\n"
    "       seriesdump --batch-delete-older END-DATE metric-prefix\n"
    "To see the format in which data is stored, use --import or --delete."
)


def _usage(ctx: click.Context, errmsg: str, retval: int) -> None:
    click.echo(errmsg, err=True)
    click.echo(USAGE, err=True)
    ctx.exit(retval)


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level, format="%(message)s", datefmt="[%X]", force=True,
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
    )
    if level != "DEBUG":
        # one INFO line per HTTP request otherwise
        logging.getLogger("httpx").setLevel(logging.WARNING)


@asynccontextmanager
async def open_runtime(config: StoreConfig) -> AsyncIterator[tuple[StoreClient, UidResolver]]:
    """Store and UID resolver sharing one pooled HTTP client."""
    client = make_client(config)
    store = HbaseRestStore.from_config(client, config)
    try:
        yield store, RestUidResolver.from_config(client, config)
    finally:
        await store.aclose()


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--import", "import_format", is_flag=True,
              help="Print the rows in a format suitable for the 'import' command.")
@click.option("--delete", is_flag=True, help="Delete rows as they are scanned (implies --import).")
@click.option("--batch-delete-older", is_flag=True,
              help="Delete everything before END-DATE for all metrics matching a prefix.")
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False), default=None,
              help="OpenTSDB-style properties file")
@click.option("--rest-url", default=None, help="Base URL of the HBase REST gateway")
@click.option("--table", default=None, help="Name of the data table")
@click.option("--uidtable", default=None, help="Name of the UID table")
@click.option("--manifest", "manifest_path", type=str, default="",
              help="JSONL manifest for --batch-delete-older; metrics already done in it are skipped")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.argument("args", nargs=-1)
@click.pass_context
def main(ctx, import_format, delete, batch_delete_older, config_path, rest_url, table, uidtable,
         manifest_path, verbose, args):
    """Dump (and optionally delete) the raw rows of time series."""
    if not args:
        _usage(ctx, "Invalid usage.", 1)
    elif batch_delete_older:
        if len(args) != 2:
            _usage(ctx, "Wrong number of arguments with option --batch-delete-older.", 2)
    elif len(args) < 3:
        _usage(ctx, "Not enough arguments.", 2)

    try:
        config = load_config(config_path, rest_url=rest_url, data_table=table, uid_table=uidtable,
                             log_level="DEBUG" if verbose else None)
    except (OSError, ValidationError) as e:
        raise click.ClickException(f"Bad configuration: {e}")
    _setup_logging(config.log_level)

    async def run() -> None:
        async with open_runtime(config) as (store, uids):
            if batch_delete_older:
                end_time, prefix = args
                path = manifest_path or f"batch_delete_{_now_ts_str()}.jsonl"
                coverage = LocalManifestCoverage(path)
                res = await batch_delete(
                    store=store, uids=uids, end_time=end_time, metric_prefix=prefix,
                    layout=config.layout, manifest=JSONLManifest(path), coverage=coverage,
                )
                console.print(
                    f"[bold]summary[/]: "
                    f"[green]processed_ok[/]={res['processed_ok']}  "
                    f"[red]processed_failed[/]={res['processed_failed']}  "
                    f"[yellow]skipped[/]={res['skipped']}  "
                    f"(metrics={res['metrics']}, rows touched={res['rows_touched']}, manifest={path})"
                )
                return
            queries = await parse_query(list(args), uids, layout=config.layout)
            await dump_series(
                store=store, uids=uids, queries=queries, delete=delete,
                import_format=import_format or delete, quiet=False,
                layout=config.layout, out=sys.stdout,
            )

    try:
        asyncio.run(run())
    except SeriesDumpError as e:
        raise click.ClickException(f"{type(e).__name__}: {e}")
    except httpx.HTTPError as e:
        raise click.ClickException(f"{type(e).__name__}: {e}")


if __name__ == "__main__":
    main()
