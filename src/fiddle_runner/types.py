"""Runner type definitions.

Snippet sources, run requests, forge commands and output records.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

__all__ = [
    "ForgeCommand",
    "OutputStream",
    "OutputRecord",
    "SnippetSources",
    "RunRequest",
    "ScratchSession",
]


class ForgeCommand(str, Enum):
    """Forge operations; the value is the build script that gets run."""

    PACKAGE = "package"
    MAKE = "make"


class OutputStream(str, Enum):
    """Origin of an output chunk."""

    STDOUT = "stdout"
    STDERR = "stderr"


@dataclass(frozen=True)
class OutputRecord:
    """One chunk of child process output.

    Attributes:
        text: Decoded chunk text
        stream: Stream the chunk was read from
    """

    text: str
    stream: OutputStream = OutputStream.STDOUT

    @property
    def is_error(self) -> bool:
        return self.stream is OutputStream.STDERR


@dataclass(frozen=True)
class SnippetSources:
    """The source fragments of a snippet.

    Attributes:
        main: Main process script
        renderer: Renderer script
        html: Page markup
        preload: Optional preload script
    """

    main: str = ""
    renderer: str = ""
    html: str = ""
    preload: str = ""

    def scripts(self) -> list[str]:
        """Script fragments that may reference external modules."""
        return [self.main, self.renderer, self.preload]


@dataclass(frozen=True)
class RunRequest:
    """Everything one run or forge operation needs from the editor.

    Attributes:
        sources: Snippet sources
        version: Selected runtime version
        name: Snippet name, also the name of its user data directory
    """

    sources: SnippetSources
    version: str
    name: str = "fiddle"


@dataclass
class ScratchSession:
    """A scratch directory owned by one operation."""

    path: Path
    created_at: datetime = field(default_factory=datetime.now)
    cleaned: bool = False

    def __repr__(self) -> str:
        age = (datetime.now() - self.created_at).total_seconds()
        return f"ScratchSession(path={self.path}, age={age:.1f}s, cleaned={self.cleaned})"
