"""Structured logging with stdout, file, syslog and journald backends."""

from __future__ import annotations

import contextlib
import datetime as dt
import enum
import json
import os
import socket
import struct
import sys
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Mapping, Protocol, TextIO

JOURNAL_SOCKET = "/run/systemd/journal/socket"
SYSLOG_IDENT = "exodus-rsync"

# Priority values shared by syslog and journald.
_PRI_ERR = 3
_PRI_WARNING = 4
_PRI_INFO = 6
_PRI_DEBUG = 7


class Level(enum.IntEnum):
    """Severity of a log record, ordered from least to most severe."""

    DEBUG = 0
    INFO = 1
    WARN = 2
    ERROR = 3
    FATAL = 4

    def __str__(self) -> str:
        return self.name


_LEVEL_NAMES = {
    "debug": Level.DEBUG,
    "info": Level.INFO,
    "warn": Level.WARN,
    "warning": Level.WARN,
    "error": Level.ERROR,
    "fatal": Level.FATAL,
}


def parse_level(name: str) -> Level:
    """Return the level named by ``name``; raise ValueError if unknown."""
    try:
        return _LEVEL_NAMES[name]
    except KeyError:
        raise ValueError("invalid level") from None


@dataclass(frozen=True)
class LogRecord:
    """A single log event as delivered to handlers."""

    level: Level
    message: str
    fields: dict[str, Any] = field(default_factory=dict)
    timestamp: dt.datetime = field(
        default_factory=lambda: dt.datetime.now(dt.timezone.utc)
    )


class Handler(Protocol):
    def handle(self, record: LogRecord) -> None: ...


class LoggerConfig(Protocol):
    """Anything providing logger configuration."""

    log_level: str
    logger: str


def _sprint(value: Any) -> str:
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return "[" + " ".join(_sprint(v) for v in value) + "]"
    if isinstance(value, Mapping):
        parts = (f"{_sprint(k)}:{_sprint(v)}" for k, v in sorted(value.items(), key=lambda kv: str(kv[0])))
        return "map[" + " ".join(parts) + "]"
    return str(value)


def _sprint_join(values: tuple[Any, ...]) -> str:
    """Join values, adding spaces only between two non-string operands."""
    out: list[str] = []
    previous_is_str = True
    for index, value in enumerate(values):
        is_str = isinstance(value, str)
        if index > 0 and not is_str and not previous_is_str:
            out.append(" ")
        out.append(_sprint(value))
        previous_is_str = is_str
    return "".join(out)


def _encode_fields(fields: Mapping[str, Any]) -> str:
    encoded = json.dumps(
        {key: _sprint(value) for key, value in fields.items()},
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    for char, escape in (
        ("<", "\\u003c"),
        (">", "\\u003e"),
        ("&", "\\u0026"),
        ("\u2028", "\\u2028"),
        ("\u2029", "\\u2029"),
    ):
        encoded = encoded.replace(char, escape)
    return encoded + "\n"


def _format_line(record: LogRecord) -> str:
    return f"{record.message} {_encode_fields(record.fields)}"


def _unix_date(timestamp: dt.datetime) -> str:
    ts = timestamp.astimezone(dt.timezone.utc)
    return f"{ts:%a %b} {ts.day:2d} {ts:%H:%M:%S} UTC {ts:%Y}"


class BaseHandler:
    """Writes timestamped, JSON-annotated lines to a text stream (stdout by default)."""

    def __init__(self, stream: TextIO | None = None, *, test: bool = False) -> None:
        self.stream = stream
        self.test = test
        self.entries: list[str] = []
        self._lock = threading.Lock()

    def handle(self, record: LogRecord) -> None:
        line = _format_line(record)
        stream = self.stream if self.stream is not None else sys.stdout
        with self._lock:
            if self.test:
                self.entries.append(line)
            stream.write(f"{_unix_date(record.timestamp)} {line}")
            stream.flush()


def _journal_field(key: str, value: str) -> bytes:
    data = value.encode("utf-8")
    name = key.encode("utf-8")
    if b"\n" in data:
        return name + b"\n" + struct.pack("<Q", len(data)) + data + b"\n"
    return name + b"=" + data + b"\n"


def _valid_journal_key(key: str) -> bool:
    return (
        bool(key)
        and not key.startswith("_")
        and all(c == "_" or c.isdigit() or ("A" <= c <= "Z") for c in key)
    )


def _journal_send(message: str, priority: int, fields: Mapping[str, str]) -> None:
    if not hasattr(socket, "AF_UNIX"):
        raise OSError("journald is not available on this platform")
    payload = [_journal_field("MESSAGE", message), _journal_field("PRIORITY", str(priority))]
    for key, value in fields.items():
        if not _valid_journal_key(key):
            raise ValueError(f"invalid journal field name {key!r}")
        payload.append(_journal_field(key, value))
    with socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM) as sock:
        sock.sendto(b"".join(payload), JOURNAL_SOCKET)


def _journal_priority(level: Level) -> int:
    if level >= Level.ERROR:
        return _PRI_ERR
    if level == Level.WARN:
        return _PRI_WARNING
    if level == Level.INFO:
        return _PRI_INFO
    return _PRI_DEBUG


class JournalHandler:
    """Sends records to the systemd journal with upper-cased field names."""

    def __init__(
        self,
        sender: Callable[[str, int, Mapping[str, str]], None] | None = None,
        *,
        test: bool = False,
    ) -> None:
        self.sender = sender if sender is not None else _journal_send
        self.test = test
        self.entries: list[str] = []
        self._lock = threading.Lock()

    def handle(self, record: LogRecord) -> None:
        priority = _journal_priority(record.level)
        fields = {key.upper(): _sprint(value) for key, value in record.fields.items()}
        if self.test:
            rendered = "".join(f"{k}={v}" for k, v in sorted(fields.items()))
            with self._lock:
                self.entries.append(f"{record.message} {rendered}")
        self.sender(record.message, priority, fields)


def _open_syslog() -> Callable[[int, str], None]:
    try:
        import syslog
    except ImportError:
        raise OSError("syslog is not available on this platform") from None
    syslog.openlog(ident=SYSLOG_IDENT, facility=syslog.LOG_USER)

    def write(priority: int, message: str) -> None:
        syslog.syslog(priority, message)

    return write


def _syslog_priority(level: Level) -> int:
    if level >= Level.ERROR:
        return _PRI_ERR
    if level == Level.WARN:
        return _PRI_WARNING
    # Nothing lower than INFO: syslog often filters such messages itself.
    return _PRI_INFO


class SyslogHandler:
    """Sends records to the local syslog daemon."""

    def __init__(
        self,
        writer: Callable[[int, str], None] | None = None,
        *,
        test: bool = False,
    ) -> None:
        self.writer = writer if writer is not None else _open_syslog()
        self.test = test
        self.entries: list[str] = []
        self._lock = threading.Lock()

    def handle(self, record: LogRecord) -> None:
        line = _format_line(record)
        if self.test:
            with self._lock:
                self.entries.append(line)
        self.writer(_syslog_priority(record.level), line)


class MemoryHandler:
    """Keeps every record in memory."""

    def __init__(self) -> None:
        self.entries: list[LogRecord] = []
        self._lock = threading.Lock()

    def handle(self, record: LogRecord) -> None:
        with self._lock:
            self.entries.append(record)


class _LevelFilter:
    def __init__(self, handler: Handler, level: Level) -> None:
        self.handler = handler
        self.level = level

    def handle(self, record: LogRecord) -> None:
        if record.level >= self.level:
            self.handler.handle(record)


class _MultiHandler:
    def __init__(self, *handlers: Handler) -> None:
        self.handlers = handlers

    def handle(self, record: LogRecord) -> None:
        errors = []
        for handler in self.handlers:
            try:
                handler.handle(record)
            except (OSError, ValueError) as exc:
                errors.append(exc)
        if errors:
            raise errors[0]


class Entry:
    """A set of fields bound to a logger, ready to emit a message."""

    def __init__(self, logger: Logger, fields: Mapping[str, Any]) -> None:
        self.logger = logger
        self.fields = dict(fields)

    def debug(self, message: str) -> None:
        self.logger._emit(Level.DEBUG, message, self.fields)

    def info(self, message: str) -> None:
        self.logger._emit(Level.INFO, message, self.fields)

    def warn(self, message: str) -> None:
        self.logger._emit(Level.WARN, message, self.fields)

    def error(self, message: str) -> None:
        self.logger._emit(Level.ERROR, message, self.fields)

    @contextlib.contextmanager
    def trace(self, message: str) -> Iterator[Entry]:
        """Log ``message`` on entry and again on exit with its duration (or error)."""
        self.info(message)
        start = time.monotonic()
        try:
            yield self
        except Exception as exc:
            duration = int((time.monotonic() - start) * 1000)
            Entry(self.logger, {**self.fields, "duration": duration, "error": exc}).error(message)
            raise
        duration = int((time.monotonic() - start) * 1000)
        Entry(self.logger, {**self.fields, "duration": duration}).info(message)


class Logger:
    """Logger dispatching records at or above ``level`` to ``handler``."""

    def __init__(self, handler: Handler | None = None, level: Level = Level.DEBUG) -> None:
        self.handler: Handler = handler if handler is not None else BaseHandler()
        self.level = level

    def f(self, *args: Any) -> Entry:
        """Build an entry from alternating field names and values."""
        if len(args) % 2:
            raise ValueError("fields must be given as name/value pairs")
        fields: dict[str, Any] = {}
        for key, value in zip(args[::2], args[1::2]):
            if not isinstance(key, str):
                raise TypeError(f"field name must be a string, not {type(key).__name__}")
            fields[key] = value
        return Entry(self, fields)

    def debug(self, message: str) -> None:
        self._emit(Level.DEBUG, message, {})

    def info(self, message: str) -> None:
        self._emit(Level.INFO, message, {})

    def warn(self, message: str) -> None:
        self._emit(Level.WARN, message, {})

    def error(self, message: str) -> None:
        self._emit(Level.ERROR, message, {})

    def log(self, *args: Any) -> None:
        """Log the joined arguments at debug level, tagged with ``aws=1``."""
        self.f("aws", 1).debug(_sprint_join(args))

    def start_platform_logger(self, cfg: LoggerConfig) -> None:
        """Also send records to the platform logger named by the config."""
        level_name = cfg.log_level
        if level_name == "none":
            return
        if level_name == "trace":
            level_name = "debug"

        try:
            level = parse_level(level_name)
        except ValueError:
            self.warn(f"Invalid loglevel '{level_name}' in config, defaulting to 'info'")
            level = Level.INFO

        ctor = logger_backend(cfg, journal_available())
        try:
            handler = ctor()
        except OSError as exc:
            self.error(f"Failed to initialize '{cfg.logger}' logger: {exc}")
            return

        self.handler = _MultiHandler(self.handler, _LevelFilter(handler, level))

    def _emit(self, level: Level, message: str, fields: Mapping[str, Any]) -> None:
        if level < self.level:
            return
        record = LogRecord(level, message, dict(fields))
        try:
            self.handler.handle(record)
        except (OSError, ValueError) as exc:
            print(f"error logging: {exc}", file=sys.stderr)


def new_logger(verbose: int) -> Logger:
    """Return a stdout logger whose threshold follows the ``-v`` count."""
    level = Level.WARN
    if verbose == 1:
        level = Level.INFO
    elif verbose >= 2:
        level = Level.DEBUG
    return Logger(handler=_LevelFilter(BaseHandler(), level))


def logger_backend(cfg: LoggerConfig, have_journal: bool) -> Callable[[], Handler]:
    """Return a constructor for the platform handler selected by ``cfg.logger``."""
    name = cfg.logger
    if name == "journald":
        return JournalHandler
    if name == "syslog":
        return SyslogHandler
    if name.startswith("file:"):
        log_path = name.split(":")[1]

        def open_file() -> Handler:
            fd = os.open(log_path, os.O_APPEND | os.O_WRONLY | os.O_CREAT, 0o600)
            return BaseHandler(os.fdopen(fd, "a", encoding="utf-8"))

        return open_file
    return JournalHandler if have_journal else SyslogHandler


def journal_available() -> bool:
    """Whether the systemd journal socket accepts connections."""
    if not hasattr(socket, "AF_UNIX") or not os.path.exists(JOURNAL_SOCKET):
        return False
    try:
        with socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM) as sock:
            sock.connect(JOURNAL_SOCKET)
    except OSError:
        return False
    return True


_current_lock = threading.Lock()
_current: Logger | None = None


def current_logger() -> Logger:
    """Return the active logger, creating a default one if none is set."""
    global _current
    with _current_lock:
        if _current is None:
            _current = new_logger(0)
        return _current


@contextlib.contextmanager
def use_logger(logger: Logger) -> Iterator[Logger]:
    """Make ``logger`` the active logger (for all threads) within the block."""
    global _current
    with _current_lock:
        previous = _current
        _current = logger
    try:
        yield logger
    finally:
        with _current_lock:
            _current = previous