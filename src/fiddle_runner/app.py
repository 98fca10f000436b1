"""fiddle-runner command line entry point.

Usage:
    fiddle-runner run --runtime-version 2.0.2 --main main.js --html index.html
    fiddle-runner package --runtime-version 2.0.2 --main main.js --name my-fiddle
    fiddle-runner make --runtime-version 2.0.2 --main main.js
    fiddle-runner install --dir ./my-fiddle say lodash
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import sys
from pathlib import Path
from typing import Sequence

from .config import Config, get_config
from .providers import LocalBinaryProvider, NpmInstaller, TempScratchManager
from .runner import Runner
from .runtime import ProcessRunner, ProcessSupervisor
from .sink import ConsoleLogSink
from .signal_manager import SignalManager
from .state import RunState
from .types import ForgeCommand, RunRequest, SnippetSources

__all__ = ["build_parser", "create_runner", "main", "run_cli"]

logger = logging.getLogger(__name__)


def _add_snippet_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--runtime-version", required=True, help="runtime version to use, e.g. 2.0.2")
    parser.add_argument("--main", type=Path, help="main process script")
    parser.add_argument("--renderer", type=Path, help="renderer script")
    parser.add_argument("--html", type=Path, help="page markup")
    parser.add_argument("--preload", type=Path, help="preload script")
    parser.add_argument("--name", default="fiddle", help="fiddle name (default: fiddle)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fiddle-runner",
        description="Run and package small runtime fiddles.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    run = commands.add_parser("run", help="run the fiddle")
    _add_snippet_arguments(run)
    run.add_argument("--inspect", action="store_true", help="start the runtime with --inspect")

    for command in ForgeCommand:
        forge = commands.add_parser(command.value, help=f"{command.value} the fiddle with forge")
        _add_snippet_arguments(forge)

    install = commands.add_parser("install", help="install modules into a directory")
    install.add_argument("--dir", type=Path, default=Path.cwd(), help="target directory")
    install.add_argument("modules", nargs="*", help="module names (default: manifest dependencies)")

    return parser


def _read(path: Path | None) -> str:
    if path is None:
        return ""
    return path.read_text(encoding="utf-8")


def build_request(args: argparse.Namespace) -> RunRequest:
    """Read the fiddle files named on the command line."""
    sources = SnippetSources(
        main=_read(args.main),
        renderer=_read(args.renderer),
        html=_read(args.html),
        preload=_read(args.preload),
    )
    return RunRequest(sources=sources, version=args.runtime_version, name=args.name)


def create_runner(
    config: Config,
    request: RunRequest | None = None,
    *,
    runtime_args: Sequence[str] = (),
    sink: ConsoleLogSink | None = None,
) -> Runner:
    """Wire a runner with the default collaborators."""
    empty = RunRequest(sources=SnippetSources(), version="")
    process_runner = ProcessRunner(term_timeout=config.stop_timeout)

    return Runner(
        state=RunState(),
        sink=sink or ConsoleLogSink(),
        scratch=TempScratchManager(),
        installer=NpmInstaller(config.package_manager, runner=ProcessRunner()),
        binaries=LocalBinaryProvider(config.binary_dir),
        request_provider=lambda: request or empty,
        supervisor=ProcessSupervisor(runner=process_runner),
        app_data_dir=config.app_data_dir,
        forge_output_dir=config.forge_output_dir,
        runtime_args=runtime_args,
        package_manager=config.package_manager,
    )


async def _run_fiddle(runner: Runner) -> int:
    signal_manager = SignalManager(runner)
    await signal_manager.start()

    exit_task: asyncio.Task | None = None
    shutdown_watcher: asyncio.Task | None = None
    try:
        if not await runner.run():
            return 1

        exit_task = asyncio.create_task(runner.wait_for_exit(), name="fiddle-exit")
        shutdown_watcher = asyncio.create_task(signal_manager.wait_for_shutdown(), name="shutdown-watcher")
        await asyncio.wait({exit_task, shutdown_watcher}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (exit_task, shutdown_watcher):
            if task and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        await signal_manager.stop()
        await runner.shutdown()
        logger.info("run: cleanup completed")

    if signal_manager.is_force_exit:
        logger.warning("Force exit requested, terminating with exit code 130")
        return 130
    return 0


async def run_cli(args: argparse.Namespace, config: Config | None = None) -> int:
    """Execute one parsed command.

    Returns:
        Process exit code
    """
    config = config or get_config()
    logger.info(f"Starting fiddle-runner {args.command}: {config}")

    if args.command == "install":
        runner = create_runner(config)
        return 0 if await runner.npm_install(args.dir, *args.modules) else 1

    try:
        request = build_request(args)
    except OSError as e:
        print(f"Could not read fiddle files: {e}", file=sys.stderr)
        return 1

    if args.command == "run":
        runtime_args = ["--inspect"] if args.inspect else []
        return await _run_fiddle(create_runner(config, request, runtime_args=runtime_args))

    runner = create_runner(config, request)
    try:
        return 0 if await runner.perform_forge_operation(ForgeCommand(args.command)) else 1
    finally:
        await runner.shutdown()


def configure_logging(config: Config) -> None:
    """Log to a temp file in debug mode, to stderr otherwise."""
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(stderr_handler)
        log_level = logging.WARNING

    # Third-party libraries stay at WARNING
    logging.basicConfig(level=logging.WARNING, handlers=log_handlers)
    logging.getLogger("fiddle_runner").setLevel(log_level)


def main(argv: Sequence[str] | None = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    config = get_config()
    configure_logging(config)
    sys.exit(asyncio.run(run_cli(args, config)))


if __name__ == "__main__":
    main()
