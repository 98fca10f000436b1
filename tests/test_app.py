"""Command line tests."""

from __future__ import annotations

import io
from pathlib import Path
from unittest import mock

import pytest

from fiddle_runner.app import build_parser, build_request, create_runner, run_cli
from fiddle_runner.config import Config
from fiddle_runner.sink import ConsoleLogSink
from fiddle_runner.types import ForgeCommand


class TestParser:
    """Argument parsing."""

    def test_run(self, tmp_path: Path):
        args = build_parser().parse_args([
            "run", "--runtime-version", "2.0.2", "--main", str(tmp_path / "main.js"), "--inspect",
        ])
        assert args.command == "run"
        assert args.runtime_version == "2.0.2"
        assert args.main == tmp_path / "main.js"
        assert args.inspect is True
        assert args.name == "fiddle"

    @pytest.mark.parametrize("command", [c.value for c in ForgeCommand])
    def test_forge_commands(self, command: str):
        args = build_parser().parse_args([command, "--runtime-version", "2.0.2", "--name", "demo"])
        assert args.command == command
        assert args.name == "demo"

    def test_install(self, tmp_path: Path):
        args = build_parser().parse_args(["install", "--dir", str(tmp_path), "say", "lodash"])
        assert args.dir == tmp_path
        assert args.modules == ["say", "lodash"]

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestBuildRequest:
    """Reading fiddle files."""

    def test_reads_files(self, tmp_path: Path):
        (tmp_path / "main.js").write_text("require('say')")
        (tmp_path / "index.html").write_text("<html></html>")
        args = build_parser().parse_args([
            "run", "--runtime-version", "2.0.2",
            "--main", str(tmp_path / "main.js"),
            "--html", str(tmp_path / "index.html"),
        ])

        request = build_request(args)
        assert request.version == "2.0.2"
        assert request.sources.main == "require('say')"
        assert request.sources.html == "<html></html>"
        assert request.sources.renderer == ""


class TestRunCli:
    """run_cli() dispatch."""

    @pytest.mark.asyncio
    async def test_run_with_missing_binary_fails(self, tmp_path: Path):
        config = Config(binary_dir=tmp_path / "bin", app_data_dir=tmp_path / "app-data")
        args = build_parser().parse_args(["run", "--runtime-version", "2.0.2"])

        with mock.patch("fiddle_runner.app.ConsoleLogSink", return_value=ConsoleLogSink(io.StringIO(), io.StringIO())):
            assert await run_cli(args, config) == 1

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path: Path):
        args = build_parser().parse_args([
            "run", "--runtime-version", "2.0.2", "--main", str(tmp_path / "missing.js"),
        ])
        assert await run_cli(args, Config(binary_dir=tmp_path)) == 1

    @pytest.mark.asyncio
    async def test_forge_dispatch(self, tmp_path: Path):
        args = build_parser().parse_args(["make", "--runtime-version", "2.0.2"])
        runner = mock.MagicMock()
        runner.perform_forge_operation = mock.AsyncMock(return_value=True)
        runner.shutdown = mock.AsyncMock()

        with mock.patch("fiddle_runner.app.create_runner", return_value=runner):
            assert await run_cli(args, Config(binary_dir=tmp_path)) == 0

        runner.perform_forge_operation.assert_awaited_once_with(ForgeCommand.MAKE)
        runner.shutdown.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_install_dispatch(self, tmp_path: Path):
        args = build_parser().parse_args(["install", "--dir", str(tmp_path), "say"])
        runner = mock.MagicMock()
        runner.npm_install = mock.AsyncMock(return_value=False)

        with mock.patch("fiddle_runner.app.create_runner", return_value=runner):
            assert await run_cli(args, Config(binary_dir=tmp_path)) == 1

        runner.npm_install.assert_awaited_once_with(tmp_path, "say")


class TestCreateRunner:
    """Default wiring."""

    def test_wires_config(self, tmp_path: Path):
        config = Config(binary_dir=tmp_path, package_manager="yarn", stop_timeout=2.0)
        runner = create_runner(config, runtime_args=["--inspect"])

        assert runner.state.is_running is False
        assert runner.supervisor.is_running is False


class TestConsoleLogSink:
    """ConsoleLogSink."""

    def test_output_and_error(self):
        out, err = io.StringIO(), io.StringIO()
        sink = ConsoleLogSink(out, err)

        sink.push_output("hello")
        sink.push_output("chunk\n")
        sink.push_output("")
        sink.push_error("Failed to save files.", OSError("disk full"))

        assert out.getvalue() == "hello\nchunk\n"
        assert err.getvalue() == "Failed to save files. OSError: disk full\n"

    def test_closed_stream_does_not_raise(self):
        out = io.StringIO()
        out.close()
        ConsoleLogSink(out, out).push_output("ignored")
