"""
Game Server Manager - Main Entry Point

Lifecycle control for locally hosted game servers through Discord commands.

- servers.yml configuration is MANDATORY
- Invalid configuration aborts startup with every problem listed
- Servers recorded as running can be restarted when the manager boots
- In-flight operations get a grace period on shutdown
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import Any, List, Optional, Set

import structlog

from .bot.commands import CommandRouter
from .config import Config, load_config, validate_config
from .context import ManagerContext
from .discord_bot import DiscordBot
from .exceptions import ConfigInvalid, ProcessControlFailure
from .health import HealthCheckServer

logger = structlog.get_logger()


def setup_logging(log_level: str, log_format: str) -> None:
    """
    Configure structured logging.

    Args:
        log_level: Logging level (debug, info, warning, error, critical)
        log_format: Output format ("json" or "console")
    """
    level_map: dict[str, int] = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
        "critical": logging.CRITICAL,
    }

    min_level = level_map.get(log_level.lower(), logging.INFO)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if log_format.lower() == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logger.info("logging_configured", level=log_level, format=log_format)


async def recover_running_servers(context: ManagerContext) -> Set[str]:
    """
    Restore the running-set after the manager (or the host) restarted.

    With auto_restart_servers_on_boot, every server recorded as running that
    is not already up gets started again. The set is then rebuilt from what
    the OS process table actually shows plus what was just launched.

    Returns:
        The reconciled running-set
    """
    config = context.config
    registry = context.registry
    controller = context.controller

    restarted: Set[str] = set()

    if config.auto_restart_servers_on_boot:
        persisted = context.running_set.consume()
        logger.info("auto_restart_candidates", servers=sorted(persisted))

        for name in sorted(persisted):
            server = registry.find(name)
            if server is None:
                logger.warning("auto_restart_unknown_server", server=name)
                continue
            if controller.is_running(server).running:
                logger.info("auto_restart_skipped_already_running", server=server.name)
                continue
            try:
                await controller.start(server)
            except ProcessControlFailure as e:
                logger.error("auto_restart_failed", server=server.name, error=str(e))
                continue
            restarted.add(server.name)
            logger.info("auto_restart_server_started", server=server.name)
    else:
        context.running_set.load()

    running: List[str] = [
        server.name for server in registry if controller.is_running(server).running
    ]
    reconciled = restarted | set(running)
    context.running_set.replace(reconciled)

    logger.info(
        "running_set_reconciled",
        running=sorted(running),
        restarted=sorted(restarted),
    )
    return reconciled


class Application:
    """Main application orchestrator."""

    def __init__(self) -> None:
        """Initialize application components."""
        self.config: Optional[Config] = None
        self.context: Optional[ManagerContext] = None
        self.router: Optional[CommandRouter] = None
        self.bot: Optional[DiscordBot] = None
        self.health_server: Optional[HealthCheckServer] = None
        self.shutdown_event: asyncio.Event = asyncio.Event()

    async def setup(self) -> None:
        """Load configuration and build the manager context."""
        logger.info("application_starting")

        try:
            self.config = load_config()
            validate_config(self.config)
        except ConfigInvalid as e:
            logger.error("config_invalid", errors=e.errors)
            raise
        except Exception as e:
            logger.error("config_load_failed", error=str(e))
            raise

        setup_logging(self.config.log_level, self.config.log_format)

        self.context = ManagerContext.from_config(self.config)
        self.router = CommandRouter(self.context)
        self.bot = DiscordBot(
            token=self.config.discord_bot_token,
            router=self.router,
            command_channel_id=self.config.command_channel_id,
        )

        if self.config.health_check_enabled:
            self.health_server = HealthCheckServer(
                self.context,
                host=self.config.health_check_host,
                port=self.config.health_check_port,
                in_flight=lambda: self.router.in_flight if self.router else 0,
            )

        logger.info(
            "application_configured",
            servers=self.context.registry.list_names(),
            prefix=self.config.command_prefix,
            health_enabled=self.config.health_check_enabled,
        )

    async def start(self) -> None:
        """Recover server state, then start accepting commands."""
        logger.info("application_starting_components")
        assert self.config is not None, "Config not loaded"
        assert self.context is not None, "Context not initialized"
        assert self.bot is not None, "Discord bot not initialized"

        await recover_running_servers(self.context)

        if self.health_server is not None:
            await self.health_server.start()
            logger.info(
                "health_server_listening",
                url=f"http://{self.config.health_check_host}:"
                f"{self.config.health_check_port}/health",
            )

        await self.bot.connect_bot()

        logger.info("application_running")

    async def stop(self) -> None:
        """Gracefully stop all components."""
        logger.info("application_stopping")

        # Discord first so no new commands arrive
        if self.bot is not None:
            self.bot.stop_accepting_commands()

        if self.router is not None and self.config is not None:
            cancelled = await self.router.drain(self.config.shutdown_grace_period)
            logger.debug("operations_drained", cancelled=cancelled)

        if self.bot is not None:
            try:
                await self.bot.disconnect_bot()
            except Exception as e:
                logger.error("discord_disconnect_failed", error=str(e))

            logger.debug("discord_disconnected")

        if self.context is not None:
            try:
                self.context.running_set.save()
            except OSError as e:
                logger.error("running_set_save_failed", error=str(e))

        if self.health_server is not None:
            try:
                await self.health_server.stop()
            except Exception as e:
                logger.error("health_server_stop_failed", error=str(e))

            logger.debug("health_server_stopped")

        logger.info("application_stopped")

    async def run(self) -> None:
        """Main application run loop."""
        try:
            await self.setup()
            await self.start()
            await self.shutdown_event.wait()
        except KeyboardInterrupt:
            logger.info("received_keyboard_interrupt")
        except Exception as e:
            logger.error("application_error", error=str(e), exc_info=True)
            raise
        finally:
            await self.stop()


async def main() -> None:
    """Main async entry point."""
    app = Application()

    # Signal handlers for graceful shutdown
    def _signal_handler(signum: int, frame: Any) -> None:
        logger.info("received_signal", signal=signal.Signals(signum).name)
        app.shutdown_event.set()

    # Only register signals on real OS (not always available on Windows/threads)
    try:
        signal.signal(signal.SIGINT, _signal_handler)
        signal.signal(signal.SIGTERM, _signal_handler)
    except (ValueError, OSError, AttributeError):
        pass

    try:
        await app.run()
    except ConfigInvalid:
        sys.exit(2)
    except Exception as e:
        logger.error("fatal_error", error=str(e), exc_info=True)
        sys.exit(1)


def run() -> None:
    """Console script entry point."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nShutdown complete.")
        sys.exit(0)


if __name__ == "__main__":
    run()
