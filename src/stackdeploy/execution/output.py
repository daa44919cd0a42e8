"""Output sinks for per-dependency command output.

Each node gets its own OutputSink through its OperationContext; there is no
process-wide logger the deployer writes to.

- StreamingSink writes every line to the console as soon as it arrives,
  prefixed with the node name (verbose mode).
- BufferedSink keeps the node's lines in memory; the runner flushes them as a
  single contiguous block once the node finishes, so concurrent siblings never
  interleave.
"""

from abc import ABC, abstractmethod

from rich.console import Console
from rich.markup import escape


class ConsoleWriter:
    """Write node-tagged output lines to a rich console."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def _format(self, name: str, line: str) -> str:
        return f"[bold cyan]\\[{escape(name)}][/bold cyan] {escape(line)}"

    def write_line(self, name: str, line: str) -> None:
        self.console.print(self._format(name, line), highlight=False, soft_wrap=True)

    def write_block(self, name: str, lines: list[str]) -> None:
        """Print all lines of one node back to back."""
        if not lines:
            return
        block = "\n".join(self._format(name, line) for line in lines)
        self.console.print(block, highlight=False, soft_wrap=True)


class OutputSink(ABC):
    """Destination for the output of one node's operation."""

    def __init__(self, name: str) -> None:
        self.name = name

    @abstractmethod
    def write(self, line: str) -> None:
        """Record one line of output (trailing newline optional)."""

    def flush(self) -> None:
        """Emit anything held back. No-op for sinks that do not buffer."""


class StreamingSink(OutputSink):
    """Forward lines to the console immediately."""

    def __init__(self, name: str, writer: ConsoleWriter) -> None:
        super().__init__(name)
        self.writer = writer

    def write(self, line: str) -> None:
        self.writer.write_line(self.name, line.rstrip("\n"))


class BufferedSink(OutputSink):
    """Hold lines until the node finishes, then emit them as one block."""

    def __init__(self, name: str, writer: ConsoleWriter | None = None) -> None:
        super().__init__(name)
        self.writer = writer
        self.lines: list[str] = []

    def write(self, line: str) -> None:
        self.lines.append(line.rstrip("\n"))

    def flush(self) -> None:
        if self.writer is not None:
            self.writer.write_block(self.name, self.lines)
        self.lines = []
