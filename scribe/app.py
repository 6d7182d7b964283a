"""
Application wiring.

Builds the Context, connects the external servers and starts every service
in order, the same way for a bot host, a script, or the test suite.

``scribe-check`` (``main``) starts the whole pipeline, reports whether the
Whisper and Ollama servers answer, and shuts everything down again.
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path

from scribe.config import PipelineConfig
from scribe.constructor import ServerManagerType
from scribe.context import Context
from scribe.server.constructor import construct_server_manager
from scribe.services.constructor import construct_services_manager


def configure_logging(log_dir: str = "logs", level: int = logging.INFO) -> Path:
    """
    Configure Python's built-in logging for the server adapters.

    Server clients log through ``logging`` because they start before the
    AsyncLoggingService is available.
    """
    logs_dir = Path(log_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    log_file = logs_dir / f"app_{timestamp}.log"

    logging.basicConfig(
        level=level,
        format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file, mode="a", encoding="utf-8"),
        ],
        force=True,
    )
    return log_file


async def create_app(
    service_type: ServerManagerType = ServerManagerType.DEVELOPMENT,
    config: PipelineConfig | None = None,
    **services_kwargs,
) -> Context:
    """
    Build and start the whole pipeline.

    Args:
        service_type: Which server/service set to construct
        config: Pipeline configuration (read from the environment when omitted)
        **services_kwargs: Forwarded to construct_services_manager

    Returns:
        Context with a connected ServerManager and initialized ServicesManager
    """
    context = Context(config=config or PipelineConfig.from_env())

    server_manager = construct_server_manager(service_type, context)
    context.set_server_manager(server_manager)
    await server_manager.connect_all()

    services_manager = construct_services_manager(service_type, context=context, **services_kwargs)
    context.set_services_manager(services_manager)
    await services_manager.initialize_all()

    return context


async def shutdown_app(context: Context, timeout: float = 60.0) -> None:
    """Stop active sessions, close services, then disconnect the servers."""
    if context.services_manager is not None:
        await context.services_manager.shutdown_all(timeout=timeout)
    if context.server_manager is not None:
        await context.server_manager.disconnect_all()


# -------------------------------------------------------------- #
# Server Check
# -------------------------------------------------------------- #


async def check_servers(
    service_type: ServerManagerType = ServerManagerType.DEVELOPMENT,
    config: PipelineConfig | None = None,
    **services_kwargs,
) -> dict[str, bool]:
    """Start the pipeline, health-check every server client, then shut down."""
    context = await create_app(service_type, config=config, **services_kwargs)
    try:
        return await context.server_manager.health_check_all()
    finally:
        await shutdown_app(context)


def main(argv: list[str] | None = None) -> int:
    """
    Run the server check from the command line.

    Returns:
        0 if every server is healthy, 1 otherwise
    """
    parser = argparse.ArgumentParser(
        prog="scribe-check",
        description="Start the recording pipeline and check the Whisper and Ollama servers.",
    )
    parser.add_argument("--testing", action="store_true", help="use the in-process mock servers")
    parser.add_argument("--log-dir", default="logs", help="directory for log files")
    args = parser.parse_args(argv)

    configure_logging(args.log_dir)
    service_type = ServerManagerType.TESTING if args.testing else ServerManagerType.DEVELOPMENT

    results = asyncio.run(check_servers(service_type, default_logging_path=args.log_dir))
    for name, healthy in results.items():
        print(f"{'✅' if healthy else '❌'} {name}")
    return 0 if all(results.values()) else 1


if __name__ == "__main__":
    sys.exit(main())
