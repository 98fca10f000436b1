"""Pytest configuration and fixtures."""

from __future__ import annotations

import shutil
import sys
from pathlib import Path
from unittest import mock

import pytest

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Add src directory to Python path
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from fiddle_runner.runner import Runner  # noqa: E402
from fiddle_runner.runtime import ProcessRunner, ProcessSupervisor  # noqa: E402
from fiddle_runner.state import RunState  # noqa: E402
from fiddle_runner.types import RunRequest, SnippetSources  # noqa: E402

# Fake runtime programs. The scratch directory is started as
# `python <dir>`, which executes <dir>/__main__.py.
QUICK_SCRIPT = (
    "import sys\n"
    "print('hi', flush=True)\n"
    "sys.stderr.write('oops\\n')\n"
    "sys.stderr.flush()\n"
)

SLEEP_SCRIPT = (
    "import time\n"
    "print('ready', flush=True)\n"
    "time.sleep(30)\n"
)


class RecordingSink:
    """Log sink that keeps everything it is given."""

    def __init__(self) -> None:
        self.outputs: list[str] = []
        self.errors: list[tuple[str, BaseException | None]] = []

    def push_output(self, text: str) -> None:
        self.outputs.append(text)

    def push_error(self, message: str, error: BaseException | None = None) -> None:
        self.errors.append((message, error))

    @property
    def output_text(self) -> str:
        return "".join(self.outputs)

    @property
    def error_text(self) -> str:
        return "".join(message for message, _ in self.errors)


class FakeScratch:
    """Scratch manager writing a runnable __main__.py into each directory."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.script = QUICK_SCRIPT
        self.created: list[Path] = []
        self.save_to_temp = mock.AsyncMock(side_effect=self._save)
        self.cleanup = mock.AsyncMock(side_effect=self._cleanup)

    async def _save(self, sources, **options) -> Path:
        directory = self.root / f"fiddle-{len(self.created)}"
        directory.mkdir(parents=True)
        (directory / "__main__.py").write_text(self.script, encoding="utf-8")
        self.created.append(directory)
        return directory

    async def _cleanup(self, directory: Path) -> bool:
        shutil.rmtree(directory, ignore_errors=True)
        return True


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def scratch(tmp_path: Path) -> FakeScratch:
    return FakeScratch(tmp_path / "scratch")


@pytest.fixture
def installer() -> mock.MagicMock:
    installer = mock.MagicMock()
    installer.get_is_package_manager_installed = mock.AsyncMock(return_value=True)
    installer.find_modules_in_editors = mock.MagicMock(return_value=[])
    installer.install_modules = mock.AsyncMock(return_value="")
    installer.run_script = mock.AsyncMock(return_value="")
    return installer


@pytest.fixture
def binaries() -> mock.MagicMock:
    binaries = mock.MagicMock()
    binaries.get_is_downloaded = mock.MagicMock(return_value=True)
    binaries.get_executable_path = mock.MagicMock(return_value=Path(sys.executable))
    return binaries


@pytest.fixture
def app_data_dir(tmp_path: Path) -> Path:
    return tmp_path / "app-data"


@pytest.fixture
def run_request() -> RunRequest:
    return RunRequest(
        sources=SnippetSources(main="const a = require('say')", html="<html></html>"),
        version="2.0.2",
        name="test-app-name",
    )


@pytest.fixture
def runner(sink, scratch, installer, binaries, app_data_dir, run_request) -> Runner:
    """Runner wired to fakes, with a real supervisor and short stop timeouts."""
    supervisor = ProcessSupervisor(runner=ProcessRunner(term_timeout=0.5, kill_timeout=0.5))
    return Runner(
        state=RunState(),
        sink=sink,
        scratch=scratch,
        installer=installer,
        binaries=binaries,
        request_provider=lambda: run_request,
        supervisor=supervisor,
        app_data_dir=app_data_dir,
    )
