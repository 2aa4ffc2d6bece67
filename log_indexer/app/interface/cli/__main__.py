import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv

from log_indexer.app.config import (
    ApiSettings,
    IndexerSettings,
    get_api_settings,
    get_indexer_settings,
    get_store_settings,
)
from log_indexer.app.domain.errors import ConfigurationError, LogIndexerError
from log_indexer.app.interface.tasks import TASKS


load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)

logger = logging.getLogger("log_indexer")

app = typer.Typer(no_args_is_help=True)
indexer_app = typer.Typer(help="cli for mirroring contract event logs.")
api_app = typer.Typer(help="read-only query api over the indexed logs.")
app.add_typer(indexer_app, name="indexer")
app.add_typer(api_app, name="api")

USAGE = """Usage:
  log-indexer indexer run --once
  log-indexer indexer run --watch
  log-indexer indexer run --export-json [--out indexed_logs.json]

Required env: CONTRACT_ADDRESS, EXPLORER_API_KEY (or BSCSCAN_API_KEY), ABI_PATH"""


def _fail(message: str, code: int = 1) -> typer.Exit:
    typer.echo(f"❌ {message}", err=True)
    return typer.Exit(code=code)


def _apply_log_level(level: str) -> None:
    logging.getLogger().setLevel(getattr(logging, level.upper(), logging.INFO))


def _load_indexer_settings() -> IndexerSettings:
    try:
        settings = get_indexer_settings()
    except ConfigurationError as exc:
        raise _fail(str(exc))
    _apply_log_level(settings.log_level)
    return settings


@indexer_app.command("run")
def run(
    once: bool = typer.Option(False, "--once", help="Run a single catch-up pass and exit."),
    watch: bool = typer.Option(False, "--watch", help="Sync every WATCH_INTERVAL seconds, forever."),
    export_json: bool = typer.Option(False, "--export-json", help="Dump the store to a JSON file."),
    out: Path = typer.Option(Path("indexed_logs.json"), "--out", help="Export destination."),
) -> None:
    selected = [name for name, flag in (("once", once), ("watch", watch), ("export_json", export_json)) if flag]

    if not selected:
        typer.echo(USAGE)
        raise typer.Exit(code=0)
    if len(selected) > 1:
        raise _fail("--once, --watch and --export-json are mutually exclusive", code=2)

    mode = selected[0]
    task = TASKS[mode]

    if mode == "export_json":
        try:
            db_path = get_store_settings().db_path
        except ConfigurationError as exc:
            raise _fail(str(exc))
        kwargs: dict[str, object] = {"db_path": db_path, "out_path": out}
    else:
        kwargs = {"settings": _load_indexer_settings()}

    try:
        asyncio.run(task(**kwargs))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        raise typer.Exit(code=130)
    except LogIndexerError as exc:
        raise _fail(f"{type(exc).__name__}: {exc}")


@api_app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", "--host"),
    port: Optional[int] = typer.Option(None, "--port", help="Defaults to $PORT (8787)."),
) -> None:
    import uvicorn

    from log_indexer.app.interface.api.app import create_app

    try:
        settings: ApiSettings = get_api_settings()
    except ConfigurationError as exc:
        raise _fail(str(exc))
    _apply_log_level(settings.log_level)

    logger.info("Query API on http://%s:%s (db=%s)", host, port or settings.port, settings.db_path)
    uvicorn.run(create_app(settings=settings), host=host, port=port or settings.port)


if __name__ == "__main__":
    app()
