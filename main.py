"""
CapyUpload - command line host.
Thin entry point: walks local paths, feeds the upload session and reports progress.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import posixpath
import signal
import sys
from typing import Optional

from config import Config
from discovery import discover_agents
from errors import CapyUploadError, ConfigurationError, TransferFailure
from items import DirectoryItem, FileItem, Item
from log import configure_logging, logger
from transports.base import Transport
from transports.http import HttpTransport
from transports.ws import WebSocketTransport, split_remote_path
from upload import SessionHooks, SessionSummary, UploadSession

REPORT_INTERVAL = 1.0
EXIT_INTERRUPTED = 130


def collect_items(paths: list[str], dest: str = "/", overwrite: bool = False) -> list[Item]:
    """Expand local files and directories into upload items.

    A directory keeps its own name under ``dest`` and is listed before its
    contents, so parents are always queued ahead of their children.
    """
    items: list[Item] = []
    dest = "/" + dest.strip("/")

    for path in paths:
        local = os.path.abspath(path)
        if not os.path.exists(local):
            raise FileNotFoundError(f"no such file or directory: {path}")

        base = os.path.dirname(local.rstrip(os.sep))

        if os.path.isfile(local):
            remote = posixpath.join(dest, os.path.basename(local))
            items.append(FileItem(remote, local, os.path.getsize(local), overwrite))
            continue

        for root, dirs, files in os.walk(local):
            dirs.sort()
            rel_root = os.path.relpath(root, base).replace(os.sep, "/")
            remote_root = posixpath.join(dest, rel_root)
            items.append(DirectoryItem(remote_root))
            for name in sorted(files):
                full = os.path.join(root, name)
                if not os.path.isfile(full):
                    continue
                items.append(FileItem(
                    posixpath.join(remote_root, name), full, os.path.getsize(full), overwrite
                ))

    return items


def check_agent_paths(items: list[Item]) -> None:
    """Reject items a CapyDeploy agent cannot place before anything is sent."""
    for item in items:
        if isinstance(item, FileItem):
            try:
                split_remote_path(item.path)
            except ValueError as e:
                raise ConfigurationError(f"ws transport: {e}")
        elif not item.path.strip("/"):
            raise ConfigurationError("ws transport: cannot create the root directory")


def build_transport(config: Config) -> Transport:
    if not config.server:
        raise ConfigurationError("no server configured (use --server or CAPYUPLOAD_SERVER)")
    if config.transport == "ws":
        return WebSocketTransport(
            config.server,
            token=config.token,
            hub_name=config.hub_name,
            chunk_size=config.chunk_size,
        )
    return HttpTransport(config.server, token=config.token, chunk_size=config.chunk_size)


class Uploader(SessionHooks):
    """Host side of an upload session: leave guard, progress line, error output."""

    def __init__(self, config: Config, transport: Transport):
        self.config = config
        self.session = UploadSession(
            transport,
            hooks=self,
            limit=config.uploads_limit,
            progress_interval=config.progress_interval,
        )
        self.errors: list[TransferFailure] = []
        self.summary: Optional[SessionSummary] = None
        self.needs_reload = False
        self.busy = False
        self.aborted = False
        self._interrupts = 0
        self._guard_armed = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    # ── Session hooks ────────────────────────────────────────────────────────

    def session_started(self) -> None:
        self.busy = True
        self.needs_reload = False
        logger.info("Uploading...")

    def session_finished(self, summary: SessionSummary) -> None:
        self.busy = False
        self.summary = summary
        self.needs_reload = True
        if summary.failed:
            logger.warning(
                f"Upload finished: {summary.succeeded}/{summary.items} item(s) ok, "
                f"{summary.failed} failed"
            )
        else:
            logger.info(f"Upload finished: {summary.items} item(s), {summary.total_bytes} bytes")

    def session_cancelled(self) -> None:
        self.busy = False
        logger.warning("Upload cancelled")

    def report_error(self, failure: TransferFailure) -> None:
        self.errors.append(failure)
        logger.error(str(failure))

    def arm_leave_guard(self) -> None:
        self._interrupts = 0
        self._loop = asyncio.get_running_loop()
        try:
            self._loop.add_signal_handler(signal.SIGINT, self._on_interrupt)
            self._guard_armed = True
        except (NotImplementedError, RuntimeError) as e:
            logger.debug(f"Leave guard unavailable: {e}")

    def disarm_leave_guard(self) -> None:
        if self._guard_armed and self._loop is not None:
            self._loop.remove_signal_handler(signal.SIGINT)
        self._guard_armed = False

    def _on_interrupt(self) -> None:
        self._interrupts += 1
        if self._interrupts == 1:
            remaining = self.session.total_items_in_flight_or_queued()
            logger.warning(
                f"{remaining} upload(s) still running. Press Ctrl-C again to abort."
            )
            return
        self.aborted = True
        self.session.reset_session()

    # ── Driving ──────────────────────────────────────────────────────────────

    def enqueue_all(self, items: list[Item]) -> None:
        for item in items:
            self.session.enqueue(item)

    async def _report_loop(self) -> None:
        try:
            while self.session.active:
                in_flight = self.session.list_in_flight_items()
                logger.info(
                    f"{self.session.aggregate_progress_percent()}% - "
                    f"{len(in_flight)} in flight, {self.session.pending_count} queued"
                )
                for f in in_flight:
                    logger.debug(f"  #{f['id']} {f['name']} {f['progress']}%")
                await asyncio.sleep(REPORT_INTERVAL)
        except asyncio.CancelledError:
            pass

    async def run(self, items: list[Item]) -> int:
        if not items:
            logger.info("Nothing to upload")
            return 0

        self.enqueue_all(items)
        reporter = asyncio.get_running_loop().create_task(self._report_loop())
        try:
            await self.session.wait_idle()
        finally:
            reporter.cancel()
            await asyncio.gather(reporter, return_exceptions=True)

        if self.aborted:
            return EXIT_INTERRUPTED
        return 1 if self.errors else 0


async def _resolve_server(config: Config, discover: bool) -> Config:
    if not discover:
        return config
    if config.transport != "ws":
        raise ConfigurationError("--discover only applies to the ws transport")

    agents = await asyncio.get_running_loop().run_in_executor(None, discover_agents)
    if not agents:
        raise ConfigurationError("no CapyDeploy agent found on the local network")
    agent = agents[0]
    logger.info(f"Using agent {agent['name']} ({agent['platform'] or 'unknown'}) at {agent['url']}")
    return config.replace(server=agent["url"])


async def run(config: Config, paths: list[str], dest: str, overwrite: bool, discover: bool) -> int:
    config = await _resolve_server(config, discover)
    items = collect_items(paths, dest, overwrite)
    if config.transport == "ws":
        check_agent_paths(items)
    transport = build_transport(config)
    try:
        uploader = Uploader(config, transport)
        return await uploader.run(items)
    finally:
        await transport.close()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="capyupload",
        description="Upload files and directories, a few at a time.",
    )
    parser.add_argument("paths", nargs="+", help="local files or directories")
    parser.add_argument("-d", "--dest", default="/", help="remote directory (default: /)")
    parser.add_argument("-t", "--transport", choices=("http", "ws"), help="wire protocol")
    parser.add_argument("-s", "--server", help="server URL (http://... or ws://...)")
    parser.add_argument("--token", help="auth token")
    parser.add_argument("--overwrite", action="store_true", help="replace existing files")
    parser.add_argument("--limit", type=int, help="max concurrent uploads")
    parser.add_argument("--discover", action="store_true", help="find a CapyDeploy agent via mDNS")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    try:
        config = Config.from_env().replace(
            transport=args.transport,
            server=args.server,
            token=args.token,
            uploads_limit=args.limit,
            log_level="DEBUG" if args.verbose else None,
        )
    except ConfigurationError as e:
        configure_logging()
        logger.error(str(e))
        return 2

    configure_logging(config.log_level)
    logger.debug(f"Loaded {config}")

    try:
        return asyncio.run(run(config, args.paths, args.dest, args.overwrite, args.discover))
    except (CapyUploadError, FileNotFoundError) as e:
        logger.error(str(e))
        return 2


if __name__ == "__main__":
    sys.exit(main())
