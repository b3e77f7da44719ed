import datetime as dt
import io
import re
from dataclasses import dataclass

import pytest

from exodus_rsync.logger import (
    BaseHandler,
    JournalHandler,
    Level,
    Logger,
    LogRecord,
    MemoryHandler,
    SyslogHandler,
    current_logger,
    logger_backend,
    new_logger,
    parse_level,
    use_logger,
)


@dataclass
class Cfg:
    log_level: str
    logger: str


DATE_RE = r"^\w{3} \w{3} [ \d]\d \d\d:\d\d:\d\d UTC \d{4} "


def emit_all(logger):
    logger.f("foo", "bar").debug("debug")
    logger.f("foo", "bar").info("info")
    logger.f("foo", "bar").warn("warn")
    logger.f("foo", "bar").error("err")


def test_platform_file_logger(tmp_path):
    path = tmp_path / "log.txt"
    memory = MemoryHandler()
    logger = Logger(handler=memory)
    logger.start_platform_logger(Cfg("info", f"file:{path}"))
    emit_all(logger)

    assert [r.message for r in memory.entries] == ["debug", "info", "warn", "err"]
    lines = path.read_text().splitlines()
    assert len(lines) == 3
    assert re.match(DATE_RE + r'info \{"foo":"bar"\}$', lines[0])
    assert lines[2].endswith('err {"foo":"bar"}')


def test_platform_logger_none_leaves_handler():
    memory = MemoryHandler()
    logger = Logger(handler=memory)
    logger.start_platform_logger(Cfg("none", "auto"))
    assert logger.handler is memory


def test_platform_logger_invalid_level(tmp_path):
    path = tmp_path / "log.txt"
    memory = MemoryHandler()
    logger = Logger(handler=memory)
    logger.start_platform_logger(Cfg("invalid", f"file:{path}"))

    assert memory.entries[0].level == Level.WARN
    assert memory.entries[0].message == "Invalid loglevel 'invalid' in config, defaulting to 'info'"
    emit_all(logger)
    assert len(path.read_text().splitlines()) == 3


def test_platform_logger_trace_means_debug(tmp_path):
    path = tmp_path / "log.txt"
    logger = Logger(handler=MemoryHandler())
    logger.start_platform_logger(Cfg("trace", f"file:{path}"))
    emit_all(logger)
    assert len(path.read_text().splitlines()) == 4


def test_bad_file_logger(tmp_path):
    name = f"file:{tmp_path / 'missing' / 'log.txt'}"
    memory = MemoryHandler()
    logger = Logger(handler=memory)
    logger.start_platform_logger(Cfg("info", name))

    assert logger.handler is memory
    assert memory.entries[0].level == Level.ERROR
    assert memory.entries[0].message.startswith(f"Failed to initialize '{name}' logger: ")


def test_platform_auto_loggers():
    assert logger_backend(Cfg("", "auto"), False) is SyslogHandler
    assert logger_backend(Cfg("", "auto"), True) is JournalHandler
    assert logger_backend(Cfg("", "journald"), False) is JournalHandler
    assert logger_backend(Cfg("", "syslog"), True) is SyslogHandler


def test_syslog_handler():
    sent = []
    handler = SyslogHandler(writer=lambda pri, msg: sent.append((pri, msg)), test=True)
    logger = Logger(handler=handler)

    logger.f("foo", "bar").info("Hi")
    logger.f("error", ValueError("Mistakes were made")).error("Something went wrong")

    assert handler.entries == [
        'Hi {"foo":"bar"}\n',
        'Something went wrong {"error":"Mistakes were made"}\n',
    ]
    assert [pri for pri, _ in sent] == [6, 3]


def test_journald_handler():
    sent = []
    handler = JournalHandler(sender=lambda m, p, f: sent.append((m, p, dict(f))), test=True)
    logger = Logger(handler=handler)

    logger.f("foo", "bar").info("Hi")
    logger.f("error", ValueError("Mistakes were made")).error("Something went wrong")

    assert handler.entries == ["Hi FOO=bar", "Something went wrong ERROR=Mistakes were made"]
    assert sent[0] == ("Hi", 6, {"FOO": "bar"})
    assert sent[1][1] == 3


def test_journald_priorities():
    sent = []
    logger = Logger(handler=JournalHandler(sender=lambda m, p, f: sent.append(p)))
    logger.debug("d")
    logger.warn("w")
    assert sent == [7, 4]


def test_file_base_handler(tmp_path):
    path = tmp_path / "log.txt"
    handler = logger_backend(Cfg("", f"file:{path}"), False)()
    handler.test = True
    logger = Logger(handler=handler)

    logger.f("foo", "bar").info("Hi")
    logger.f("error", ValueError("Mistakes were made")).error("Something went wrong")

    assert handler.entries == [
        'Hi {"foo":"bar"}\n',
        'Something went wrong {"error":"Mistakes were made"}\n',
    ]
    assert path.read_text().splitlines()[1].endswith(
        'Something went wrong {"error":"Mistakes were made"}'
    )


def test_base_handler_unix_date():
    stream = io.StringIO()
    record = LogRecord(
        Level.INFO, "msg", {}, dt.datetime(2006, 1, 2, 15, 4, 5, tzinfo=dt.timezone.utc)
    )
    BaseHandler(stream).handle(record)
    assert stream.getvalue() == "Mon Jan  2 15:04:05 UTC 2006 msg {}\n"


def test_field_formatting():
    handler = SyslogHandler(writer=lambda pri, msg: None, test=True)
    Logger(handler=handler).f("n", None, "b", True, "l", ["a", "b"], "h", "<a&b>").info("x")
    assert handler.entries == [
        'x {"b":"true","h":"\\u003ca\\u0026b\\u003e","l":"[a b]","n":"<nil>"}\n'
    ]


def test_log_func():
    memory = MemoryHandler()
    logger = new_logger(0)
    logger.handler = memory

    logger.log("hello")

    assert memory.entries[0].message == "hello"
    assert memory.entries[0].fields == {"aws": 1}
    assert memory.entries[0].level == Level.DEBUG


@pytest.mark.parametrize(
    "verbose, shown",
    [(0, ["warn", "err"]), (1, ["info", "warn", "err"]), (2, ["debug", "info", "warn", "err"])],
)
def test_new_logger_verbosity(capsys, verbose, shown):
    emit_all(new_logger(verbose))
    lines = capsys.readouterr().out.splitlines()
    assert [re.sub(DATE_RE, "", line).split(" ")[0] for line in lines] == shown


@pytest.mark.parametrize(
    "name, level",
    [("debug", Level.DEBUG), ("info", Level.INFO), ("warn", Level.WARN),
     ("warning", Level.WARN), ("error", Level.ERROR), ("fatal", Level.FATAL)],
)
def test_parse_level(name, level):
    assert parse_level(name) is level


def test_parse_level_invalid():
    with pytest.raises(ValueError, match="invalid level"):
        parse_level("loud")


def test_f_requires_pairs():
    with pytest.raises(ValueError):
        Logger(handler=MemoryHandler()).f("a", 1, "b")


def test_logger_level_threshold():
    memory = MemoryHandler()
    logger = Logger(handler=memory, level=Level.ERROR)
    logger.warn("w")
    logger.error("e")
    assert [r.message for r in memory.entries] == ["e"]


def test_trace_success():
    memory = MemoryHandler()
    logger = Logger(handler=memory)
    with logger.f("src", "a").trace("Uploading"):
        pass
    assert [(r.level, r.message) for r in memory.entries] == [
        (Level.INFO, "Uploading"),
        (Level.INFO, "Uploading"),
    ]
    assert "duration" in memory.entries[1].fields
    assert memory.entries[1].fields["src"] == "a"


def test_trace_failure():
    memory = MemoryHandler()
    logger = Logger(handler=memory)
    exc = RuntimeError("boom")
    with pytest.raises(RuntimeError):
        with logger.f().trace("Committing"):
            raise exc
    assert memory.entries[1].level == Level.ERROR
    assert memory.entries[1].fields["error"] is exc


def test_use_logger():
    logger = Logger(handler=MemoryHandler())
    with use_logger(logger) as active:
        assert active is logger
        assert current_logger() is logger
    assert current_logger() is not logger
    assert isinstance(current_logger(), Logger)