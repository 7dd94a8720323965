"""
Bitnovo Pay MCP Server - entrypoint

Serves the MCP tools over stdio and, when WEBHOOK_ENABLED is set, receives
payment notifications over HTTP in the same event loop.

stdout belongs to the MCP transport; all logging goes to stderr.
"""
import asyncio
import logging
import signal
import sys
from contextlib import asynccontextmanager

from mcp.server.fastmcp import FastMCP
from pydantic import ValidationError

from .config import Settings, load_settings
from .runtime import Runtime
from .tools import register_webhook_tools

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def create_mcp_server(settings: Settings, runtime: Runtime) -> FastMCP:
    """
    Build the FastMCP server.

    The runtime is initialized in the MCP lifespan so the webhook listener
    and background jobs share the transport's event loop.
    """

    @asynccontextmanager
    async def lifespan(server: FastMCP):
        await runtime.initialize()
        try:
            yield
        finally:
            await runtime.shutdown()

    mcp = FastMCP(
        "bitnovo-pay",
        instructions=(
            "Bitnovo Pay cryptocurrency payments. Read payment notifications "
            "received through webhooks and check the public webhook URL."
        ),
        lifespan=lifespan,
    )

    if settings.webhook_enabled:
        register_webhook_tools(mcp, runtime)

    return mcp


async def run_server(settings: Settings) -> None:
    runtime = Runtime(settings)
    mcp = create_mcp_server(settings, runtime)

    loop = asyncio.get_running_loop()
    main_task = asyncio.current_task()

    def _request_shutdown(signame: str) -> None:
        logger.info(f"Received {signame}, shutting down")
        main_task.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_shutdown, sig.name)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no signal handler support
            pass

    logger.info("Starting Bitnovo Pay MCP server (stdio)")
    try:
        await mcp.run_stdio_async()
    except asyncio.CancelledError:
        logger.info("MCP server cancelled")
    finally:
        # Lifespan already ran on a clean exit; this covers cancellation
        if runtime.initialized:
            await runtime.shutdown()
        logger.info("Bitnovo Pay MCP server stopped")


def main() -> None:
    try:
        settings = load_settings()
    except ValidationError as e:
        configure_logging("ERROR")
        logger.error(f"Invalid configuration:\n{e}")
        sys.exit(1)

    configure_logging(settings.log_level)
    asyncio.run(run_server(settings))


if __name__ == "__main__":
    main()
