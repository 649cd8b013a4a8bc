from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from functools import partial
from typing import Any, NoReturn, override

import uvloop

from libratone_lan.const import LIBRATONE_DEBUG, LIBRATONE_METRICS_PORT, LIBRATONE_VERSION, ManagerConfig
from libratone_lan.correlation import correlation_context, ensure_correlation_id
from libratone_lan.exceptions import ManagerStartError, SessionClosedError
from libratone_lan.logging_abstraction import get_logger, set_package_level
from libratone_lan.manager import DeviceManager
from libratone_lan.metrics import start_metrics_server
from libratone_lan.properties import MAX_VOLUME
from libratone_lan.session import DeviceSession
from libratone_lan.structs import DeviceInfo, PlayingState, PowerState

logger = get_logger(__name__)

CLI_PLAYING_STATES = ("play", "pause", "next", "previous")


@dataclass(frozen=True)
class Command:
    """What the CLI was asked to do.

    ``action`` is "listen" or a set command; ``value`` is the requested value
    for set commands.
    """

    action: str
    value: Any = None

    @property
    def is_listen(self) -> bool:
        return self.action == "listen"

    def apply(self, session: DeviceSession) -> None:
        """Send the set request to ``session``."""
        if self.action == "set-volume":
            session.set_volume(self.value)
        elif self.action == "set-power-state":
            session.set_power_state(self.value)
        elif self.action == "set-playing-state":
            session.set_playing_state(self.value)

    def satisfied_by(self, info: DeviceInfo) -> bool:
        """Return True once ``info`` shows the requested value."""
        if self.action == "set-volume":
            return info.volume == self.value
        if self.action == "set-power-state":
            return info.power_state == self.value
        if self.action == "set-playing-state":
            return info.playing_state == self.value
        return False


class _ArgumentParser(argparse.ArgumentParser):
    """Exits with status 1 on usage errors."""

    @override
    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def _volume(text: str) -> int:
    try:
        volume = int(text)
    except ValueError:
        error_msg = f"invalid volume: {text!r}"
        raise argparse.ArgumentTypeError(error_msg) from None
    if not 0 <= volume <= MAX_VOLUME:
        error_msg = f"volume must be between 0 and {MAX_VOLUME}, got {volume}"
        raise argparse.ArgumentTypeError(error_msg)
    return volume


def parse_cli(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = _ArgumentParser(prog="libratone-lan", description="Libratone speaker LAN controller")
    parser.add_argument(
        "-D",
        "--debug",
        action="store_true",
        help="Enable debug mode",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Serve Prometheus metrics on this port (0 disables)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {LIBRATONE_VERSION}")

    subparsers = parser.add_subparsers(dest="action", required=True, metavar="command")
    subparsers.add_parser("listen", help="Discover speakers and print their state changes")

    volume_parser = subparsers.add_parser("set-volume", help="Set the volume of every speaker")
    volume_parser.add_argument("value", type=_volume, help=f"Volume, 0-{MAX_VOLUME}")

    power_parser = subparsers.add_parser("set-power-state", help="Wake up or put every speaker to sleep")
    power_parser.add_argument("value", choices=[state.value for state in PowerState])

    playing_parser = subparsers.add_parser("set-playing-state", help="Change playback on every speaker")
    playing_parser.add_argument("value", choices=CLI_PLAYING_STATES)

    return parser.parse_args(argv)


def build_command(args: argparse.Namespace) -> Command:
    if args.action == "set-volume":
        return Command(args.action, args.value)
    if args.action == "set-power-state":
        return Command(args.action, PowerState(args.value))
    if args.action == "set-playing-state":
        return Command(args.action, PlayingState(args.value))
    return Command("listen")


class LibratoneController:
    """Runs one CLI command against every speaker the manager discovers."""

    lp: str = "LibratoneController:"

    def __init__(self, command: Command, config: ManagerConfig | None = None) -> None:
        self.command: Command = command
        self.manager: DeviceManager = DeviceManager(
            config,
            on_device_discovered=self._on_device_discovered,
            on_device_disappeared=self._on_device_disappeared,
            on_info_changed=self._on_info_changed,
        )
        self._done: asyncio.Future[int] | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    async def run(self) -> int:
        """Start the manager and wait until the command completes or a stop is requested.

        Raises:
            ManagerStartError: the manager could not bind its channels

        """
        _ = ensure_correlation_id()
        self._done = asyncio.get_running_loop().create_future()
        await self.manager.start()
        try:
            return await self._done
        finally:
            for task in self._tasks:
                task.cancel()
            self.manager.stop()

    def request_stop(self, exit_code: int = 0) -> None:
        if self._done is not None and not self._done.done():
            self._done.set_result(exit_code)

    def _on_device_discovered(self, session: DeviceSession) -> None:
        logger.info("%s Device discovered", self.lp, extra={"host": session.host})
        if self.command.is_listen:
            return
        task = asyncio.get_running_loop().create_task(self._send_command(session))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _send_command(self, session: DeviceSession) -> None:
        if not await session.wait_ready():
            return
        try:
            self.command.apply(session)
        except SessionClosedError as e:
            logger.warning("%s Could not send %s", self.lp, self.command.action, extra={"host": e.host})
        else:
            logger.info(
                "%s Sent %s",
                self.lp,
                self.command.action,
                extra={"host": session.host, "value": self.command.value},
            )

    def _on_device_disappeared(self, host: str) -> None:
        logger.info("%s Device disappeared", self.lp, extra={"host": host})

    def _on_info_changed(self, host: str, info: DeviceInfo) -> None:
        logger.info(
            "%s Info changed",
            self.lp,
            extra={"host": host, **info.model_dump(mode="json", exclude_none=True, exclude={"favorites"})},
        )
        if not self.command.is_listen and self.command.satisfied_by(info):
            logger.info("%s %s confirmed by device", self.lp, self.command.action, extra={"host": host})
            self.request_stop(0)


def _install_signal_handlers(loop: asyncio.AbstractEventLoop, stop: Callable[[], None]) -> None:
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, partial(_signal_handler, signum, stop))
    logger.debug("Signal handlers configured for SIGINT & SIGTERM")


def _signal_handler(signum: int, stop: Callable[[], None]) -> None:
    logger.info("Intercepted signal: %s (%s)", signal.Signals(signum).name, signum)
    stop()


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point for the libratone-lan CLI."""
    with correlation_context():
        args = parse_cli(argv)

        if args.debug or LIBRATONE_DEBUG:
            set_package_level(logging.DEBUG)
            logger.debug("Debug logging enabled")

        logger.info("Starting libratone-lan", extra={"version": LIBRATONE_VERSION, "command": args.action})

        metrics_port = args.metrics_port if args.metrics_port is not None else LIBRATONE_METRICS_PORT
        if metrics_port > 0:
            start_metrics_server(metrics_port)
            logger.info("Metrics server started", extra={"port": metrics_port})

        controller = LibratoneController(build_command(args))
        loop = uvloop.new_event_loop()
        asyncio.set_event_loop(loop)
        _install_signal_handlers(loop, controller.request_stop)

        try:
            exit_code = loop.run_until_complete(controller.run())
        except ManagerStartError as e:
            logger.error("Could not start device manager", extra={"reason": e.reason, "port": e.port})
            return 1
        finally:
            loop.close()

        logger.info("libratone-lan stopped", extra={"exit_code": exit_code})
        return exit_code
