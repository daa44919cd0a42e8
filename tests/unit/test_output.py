"""Unit tests for node output sinks."""

from stackdeploy.execution.output import BufferedSink, ConsoleWriter, StreamingSink


class TestStreamingSink:
    """Test StreamingSink class."""

    def test_lines_written_immediately(self, console, console_buffer):
        sink = StreamingSink("db", ConsoleWriter(console))

        sink.write("starting\n")

        assert console_buffer.getvalue() == "[db] starting\n"

    def test_markup_escaped(self, console, console_buffer):
        sink = StreamingSink("db", ConsoleWriter(console))

        sink.write("[bold]not markup[/bold]")

        assert console_buffer.getvalue() == "[db] [bold]not markup[/bold]\n"


class TestBufferedSink:
    """Test BufferedSink class."""

    def test_held_until_flush(self, console, console_buffer):
        sink = BufferedSink("db", ConsoleWriter(console))

        sink.write("one\n")
        sink.write("two")

        assert console_buffer.getvalue() == ""
        assert sink.lines == ["one", "two"]

        sink.flush()

        assert console_buffer.getvalue() == "[db] one\n[db] two\n"
        assert sink.lines == []

    def test_flush_empty_writes_nothing(self, console, console_buffer):
        BufferedSink("db", ConsoleWriter(console)).flush()

        assert console_buffer.getvalue() == ""

    def test_without_writer(self):
        sink = BufferedSink("db")
        sink.write("kept")

        sink.flush()

        assert sink.lines == []
