"""Walking a source tree to find the files that a sync should publish."""

from __future__ import annotations

import hashlib
import os
import queue
import re
import stat
import threading
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional, Protocol, Sequence

from .logger import current_logger
from .options import RsyncOptions
from .syncutil import Cancelled, CancelToken, run_with_group

FILL_WORKERS = 20
_QUEUE_SIZE = 10
_POLL_INTERVAL = 0.05
_WILDCARDS = "*?[]"

_DONE = object()
_CANCELLED = object()


@dataclass(frozen=True)
class SyncItem:
    """A single file (or link) to be included in a sync."""

    src_path: str
    key: str = ""
    link_to: str = ""
    info: Optional[os.stat_result] = None


class FilteredError(Exception):
    """A file was excluded by the include/exclude rules."""

    def __init__(self, path: str) -> None:
        super().__init__(f"filtered '{path}'")
        self.path = path


class SkipDirectory(Exception):
    """A directory, and everything beneath it, should be skipped."""

    def __init__(self) -> None:
        super().__init__("skip this directory")


class PatternError(ValueError):
    """An include/exclude pattern could not be turned into a regular expression."""


class DirEntry(Protocol):
    def is_dir(self) -> bool: ...

    def is_symlink(self) -> bool: ...

    def info(self) -> os.stat_result: ...


@dataclass(frozen=True)
class _Entry:
    path: str
    directory: bool
    symlink: bool

    def is_dir(self) -> bool:
        return self.directory

    def is_symlink(self) -> bool:
        return self.symlink

    def info(self) -> os.stat_result:
        return os.lstat(self.path)


WalkFunc = Callable[[str, Optional[DirEntry], Optional[BaseException]], None]


def file_hash(path: str, hasher: Any = None) -> str:
    """Return the hex digest of the file at ``path`` (SHA-256 by default)."""
    if hasher is None:
        hasher = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(65536), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def make_regexp(pattern: str) -> re.Pattern[str]:
    """Convert an rsync wildcard pattern into an anchored regular expression."""
    converted: list[str] = []
    chars = iter(pattern)
    for char in chars:
        if char == "\\":
            # Escape: keep it only when it escapes a wildcard character.
            following = next(chars, None)
            if following is None:
                raise PatternError(
                    f"error parsing regexp: trailing backslash at end of expression: `{pattern}`"
                )
            if following in _WILDCARDS:
                converted.append(char + following)
        elif char == ".":
            converted.append(r"\.")
        elif char == "*":
            converted.append("[^/]+")
        elif char == "?":
            converted.append("[^/]")
        else:
            converted.append(char)

    body = "".join(converted).replace("[^/]+[^/]+", ".*")
    try:
        return re.compile("^" + body + r"\Z")
    except re.error as exc:
        raise PatternError(f"error parsing regexp: {exc.msg}: `^{body}$`") from exc


def _split_after(path: str, sep: str) -> list[str]:
    parts = path.split(sep)
    return [part + sep for part in parts[:-1]] + [parts[-1]]


def match_pattern(path: str, pattern: str, is_dir: bool) -> bool:
    """Whether ``path`` matches an rsync include/exclude ``pattern``."""
    if pattern.endswith("/"):
        # Trailing slash: only directories can match.
        if not is_dir:
            return False
        pattern = pattern.rstrip("/")

    if any(char in pattern for char in _WILDCARDS):
        regex = make_regexp(pattern)
        if any(regex.match(component) for component in _split_after(path, "/")):
            return True
        return regex.match(path) is not None

    return pattern in path


def filter_path(
    path: str, exclude: Sequence[str], include: Sequence[str], is_dir: bool
) -> None:
    """Apply include/exclude rules to ``path``.

    Returns normally if the path is kept; raises SkipDirectory for an
    excluded directory, FilteredError for an excluded file and
    PatternError for a pattern that cannot be processed.
    """
    logger = current_logger()

    for ex in exclude:
        try:
            excluded = match_pattern(path, ex, is_dir)
        except PatternError as exc:
            raise PatternError(f"could not process --exclude `{ex}`: {exc}") from exc
        if not excluded:
            continue

        for inc in include:
            if inc == "*/":
                # Directories are included automatically; nothing else is.
                if is_dir:
                    return
                continue
            try:
                included = match_pattern(path, inc, is_dir)
            except PatternError as exc:
                raise PatternError(f"could not process --include `{inc}`: {exc}") from exc
            if included:
                logger.f("path", path, "include", inc).debug("path included")
                return

        logger.f("path", path, "exclude", ex).debug("path excluded")
        if is_dir:
            raise SkipDirectory()
        raise FilteredError(path)


def _clean(path: str) -> str:
    out = os.path.normpath(path)
    if out.startswith("//"):
        out = "/" + out.lstrip("/")
    return out


def _scan(path: str) -> list[_Entry]:
    with os.scandir(path) as it:
        entries = [
            _Entry(
                _clean(os.path.join(path, child.name)),
                child.is_dir(follow_symlinks=False),
                child.is_symlink(),
            )
            for child in it
        ]
    return sorted(entries, key=lambda e: os.path.basename(e.path))


def _walk_entry(path: str, entry: DirEntry, fn: WalkFunc) -> None:
    try:
        fn(path, entry, None)
    except SkipDirectory:
        if entry.is_dir():
            return
        raise
    if not entry.is_dir():
        return

    try:
        children = _scan(path)
    except OSError as exc:
        try:
            fn(path, entry, exc)
        except SkipDirectory:
            return
        children = []

    for child in children:
        try:
            _walk_entry(child.path, child, fn)
        except SkipDirectory:
            break


def _walk_dir(root: str, fn: WalkFunc) -> None:
    try:
        info = os.lstat(root)
    except OSError as exc:
        try:
            fn(root, None, exc)
        except SkipDirectory:
            pass
        return

    entry = _Entry(root, stat.S_ISDIR(info.st_mode), stat.S_ISLNK(info.st_mode))
    try:
        _walk_entry(root, entry, fn)
    except SkipDirectory:
        pass


def walk_dir_with_links(
    options: RsyncOptions,
    only_these: Sequence[str] | None,
    fn: WalkFunc,
    cancel: CancelToken | None = None,
) -> None:
    """Walk ``options.src`` like a directory walk, also following links to directories
    unless ``options.links`` is set.

    ``fn(path, entry, error)`` is called for each kept path; it may raise
    SkipDirectory or any other exception to stop the walk.
    """
    logger = current_logger()
    only = set(only_these or ())
    src_prefix = _clean(options.src + "/")
    excluded = options.excluded()
    included = options.included()

    def walk_func(path: str, entry: DirEntry | None, err: BaseException | None) -> None:
        if cancel is not None:
            cancel.raise_if_cancelled()
        if err is not None or entry is None:
            fn(path, entry, err)
            return

        if only and path not in only:
            logger.f("path", path).debug("skipping; not included in --files-from file")
            return

        # The path filtered should be relative.
        relative = _clean(path).removeprefix(src_prefix)
        try:
            filter_path(relative, excluded, included, entry.is_dir())
        except FilteredError:
            return

        if entry.is_symlink() and not options.links:
            try:
                resolved = os.path.realpath(path, strict=True)
                info = os.stat(resolved)
            except OSError as exc:
                wrapped = OSError(f"resolving link {path}: {exc}")
                wrapped.__cause__ = exc
                fn(path, entry, wrapped)
                return

            if stat.S_ISDIR(info.st_mode):
                logger.f("path", resolved).debug("walking dir via link")

                # Walk the link target but report paths under the link itself.
                def rewritten(
                    sub: str, sub_entry: DirEntry | None, sub_err: BaseException | None
                ) -> None:
                    if sub.startswith(resolved):
                        sub = sub.replace(resolved, path, 1)
                    walk_func(sub, sub_entry, sub_err)

                _walk_dir(resolved, rewritten)
                return

        fn(path, entry, None)

    _walk_dir(options.src, walk_func)


def _fill_item(path: str, entry: DirEntry, links: bool) -> SyncItem | None:
    logger = current_logger()

    try:
        info = entry.info()
    except OSError as exc:
        raise OSError(f"get file info for {path}: {exc}") from exc

    if stat.S_ISDIR(info.st_mode):
        # Logged at info level as a gradual progress indicator.
        logger.f("directory", path).info("Walking directory")
        return None

    key = ""
    link_to = ""
    if entry.is_symlink() and links:
        link_to = os.readlink(path)
    else:
        try:
            key = file_hash(path, hashlib.sha256())
        except OSError as exc:
            raise OSError(f"checksum {path}: {exc}") from exc

    item = SyncItem(src_path=path, key=key, link_to=link_to, info=info)
    logger.f("threads", threading.active_count(), "item", item).debug("send item")
    return item


def _put(q: queue.Queue, value: Any, cancel: CancelToken) -> bool:
    while not cancel.cancelled:
        try:
            q.put(value, timeout=_POLL_INTERVAL)
            return True
        except queue.Full:
            continue
    return False


def _get(q: queue.Queue, cancel: CancelToken) -> Any:
    while not cancel.cancelled:
        try:
            return q.get(timeout=_POLL_INTERVAL)
        except queue.Empty:
            continue
    return _CANCELLED


def _sync_items(
    options: RsyncOptions, only_these: Sequence[str] | None, cancel: CancelToken
) -> Iterator[SyncItem | BaseException]:
    logger = current_logger()
    walked: queue.Queue = queue.Queue(maxsize=_QUEUE_SIZE)
    results: queue.Queue = queue.Queue(maxsize=_QUEUE_SIZE)

    def on_entry(path: str, entry: DirEntry | None, err: BaseException | None) -> None:
        if err is not None:
            raise err
        if not _put(walked, (path, entry), cancel):
            raise Cancelled()

    def produce() -> None:
        try:
            walk_dir_with_links(options, only_these, on_entry, cancel)
        except Exception as exc:
            _put(walked, exc, cancel)
        finally:
            for _ in range(FILL_WORKERS):
                _put(walked, _DONE, cancel)

    def fill() -> None:
        while True:
            got = _get(walked, cancel)
            if got is _CANCELLED:
                logger.f("error", Cancelled()).debug("fillItems returning early")
                return
            if got is _DONE:
                logger.debug("fillItems completed normally")
                return
            if isinstance(got, BaseException):
                result: SyncItem | BaseException | None = got
            else:
                path, entry = got
                try:
                    result = _fill_item(path, entry, options.links)
                except Exception as exc:
                    result = exc
            if result is not None and not _put(results, result, cancel):
                return

    def close() -> None:
        _put(results, _DONE, cancel)

    threading.Thread(target=produce, daemon=True).start()
    threading.Thread(
        target=run_with_group, args=(FILL_WORKERS, fill, close), daemon=True
    ).start()

    while True:
        got = _get(results, cancel)
        if got is _CANCELLED or got is _DONE:
            return
        yield got


def walk(
    options: RsyncOptions,
    only_these: Sequence[str] | None,
    handler: Callable[[SyncItem], None],
    cancel: CancelToken | None = None,
) -> None:
    """Walk ``options.src`` and call ``handler`` for every item eligible for sync.

    The first error met, from the walk or from the handler, is raised and
    stops the walk; Cancelled is raised if ``cancel`` is cancelled.
    """
    logger = current_logger()
    outer = cancel if cancel is not None else CancelToken()
    inner = CancelToken(outer)
    try:
        for result in _sync_items(options, only_these, inner):
            logger.f("item", result).debug("got item")
            outer.raise_if_cancelled()
            if isinstance(result, BaseException):
                raise result
            handler(result)
        outer.raise_if_cancelled()
    finally:
        inner.cancel()