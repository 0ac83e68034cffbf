# src/educrm/__main__.py
# ================================================================================================
# Entry point for the service process:
#   python -m educrm        (or the installed `educrm` console script)
#
# With no arguments the server starts; `run` accepts host/port overrides.
# ================================================================================================
from typing import Optional

import typer
import uvicorn
from prometheus_client import start_http_server

from educrm.app_logger import get_logger, setup_logging
from educrm.core.config import settings

app = typer.Typer(help="Education center CRM server", add_completion=False)
log = get_logger("cli")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """Start the server when no subcommand is given."""
    if ctx.invoked_subcommand is None:
        run(host=None, port=None)


@app.command()
def run(
    host: Optional[str] = typer.Option(None, help="Bind address (defaults to APP_HOST)"),
    port: Optional[int] = typer.Option(None, help="Bind port (defaults to APP_PORT)"),
):
    """Serve the HTTP API."""
    setup_logging(settings)
    host = host or settings.APP_HOST
    port = port or settings.APP_PORT

    if settings.METRICS_ENABLED and settings.METRICS_PORT != port:
        start_http_server(settings.METRICS_PORT)
        log.info("metrics exporter listening on :%d", settings.METRICS_PORT)

    uvicorn.run(
        "educrm.main:app",
        host=host,
        port=port,
        log_config=None,  # logging is already configured
        timeout_keep_alive=int(settings.SERVER_READ_TIMEOUT),
        timeout_graceful_shutdown=int(settings.SERVER_SHUTDOWN_TIMEOUT),
    )


if __name__ == "__main__":
    app()
