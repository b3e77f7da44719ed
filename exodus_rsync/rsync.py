"""Locating the real rsync and building or running rsync commands."""

from __future__ import annotations

import errno
import os
import shutil
import sys
from dataclasses import dataclass, field
from typing import NoReturn, Sequence

from .logger import current_logger
from .options import RsyncOptions

FALLBACK_RSYNC = "/usr/bin/rsync"


class MissingRsyncError(Exception):
    """No rsync other than this program itself could be found."""

    def __init__(
        self, message: str = "an 'rsync' command is required but could not be found"
    ) -> None:
        super().__init__(message)


@dataclass
class RsyncCommand:
    """An rsync invocation: the executable and its full argument vector."""

    path: str
    args: list[str] = field(default_factory=list)


def arguments(options: RsyncOptions) -> list[str]:
    """Convert parsed options back into an rsync argument vector."""
    argv: list[str] = []

    if options.verbose:
        argv.append("-" + "v" * options.verbose)

    flags = [
        (options.archive, "--archive"),
        (options.recursive, "--recursive"),
        (options.relative, "--relative"),
        (options.links, "--links"),
        (options.copy_links, "--copy-links"),
        (options.keep_dirlinks, "--keep-dirlinks"),
        (options.hard_links, "--hard-links"),
        (options.perms, "--perms"),
        (options.executability, "--executability"),
        (options.acls, "--acls"),
        (options.xattrs, "--xattrs"),
        (options.owner, "--owner"),
        (options.group, "--group"),
        (options.devices, "--devices"),
        (options.specials, "--specials"),
        (options.times, "--times"),
        (options.atimes, "--atimes"),
        (options.crtimes, "--crtimes"),
        (options.omit_dir_times, "--omit-dir-times"),
        (options.dry_run, "--dry-run"),
    ]
    argv.extend(flag for enabled, flag in flags if enabled)

    if options.rsh:
        argv += ["--rsh", options.rsh]
    if options.ignore_existing:
        argv.append("--ignore-existing")
    if options.delete:
        argv.append("--delete")
    if options.prune_empty_dirs:
        argv.append("--prune-empty-dirs")
    if options.timeout:
        argv += ["--timeout", str(options.timeout)]
    if options.compress:
        argv.append("--compress")
    for rule in options.filter:
        argv += ["--filter", str(rule)]
    for pattern in options.exclude:
        argv += ["--exclude", str(pattern)]
    for pattern in options.include:
        argv += ["--include", str(pattern)]
    if options.files_from:
        argv += ["--files-from", str(options.files_from)]
    if options.stats:
        argv.append("--stats")
    if options.itemize_changes:
        argv.append("--itemize-changes")

    argv += [options.src, options.dest]

    current_logger().f("argv", argv).debug("prepared rsync command")
    return argv


def path_without_dir(path: str, remove: str) -> str:
    """Return a PATH-style string with the directory ``remove`` taken out."""
    out = path.replace(":" + remove + ":", "")
    out = out.removeprefix(remove + ":")
    return out.removesuffix(":" + remove)


def _look_path(name: str, search_path: str) -> str:
    found = shutil.which(name, path=search_path)
    if found is None:
        raise FileNotFoundError(
            errno.ENOENT, "executable file not found in $PATH", name
        )
    return found


def _resolve(path: str) -> str:
    return os.path.realpath(path, strict=True)


def lookup_true_rsync() -> str:
    """Return the path of an rsync on PATH which is not this program itself.

    Raises MissingRsyncError if only this program can be found, or OSError
    if a lookup fails for another reason.
    """
    logger = current_logger()
    search_path = os.environ.get("PATH", "")

    argv0 = sys.argv[0] if sys.argv else ""
    self_path = _look_path(argv0, search_path)
    rsync = _look_path("rsync", search_path)

    logger.f("self", self_path, "rsync", rsync).debug("Looked up paths")

    resolved_self = _resolve(self_path)
    resolved_rsync = _resolve(rsync)

    logger.f("self", resolved_self, "rsync", resolved_rsync).debug("Resolved paths")

    if resolved_self != resolved_rsync:
        return rsync

    # We found ourselves; try again without our own directory on PATH.
    adjusted = path_without_dir(search_path, os.path.dirname(self_path))
    rsync = _look_path("rsync", adjusted)

    if resolved_self == _resolve(rsync):
        logger.f("rsync", rsync, "PATH", adjusted).error("Cannot find 'rsync' command")
        raise MissingRsyncError()

    logger.f("rsync", rsync, "PATH", adjusted).debug("Resolved with adjusted PATH")
    return rsync


def command(args: Sequence[str]) -> RsyncCommand:
    """Prepare an rsync command with the given arguments.

    Falls back to /usr/bin/rsync if the lookup fails for any reason other
    than finding only this program.
    """
    logger = current_logger()
    try:
        rsync = lookup_true_rsync()
    except MissingRsyncError:
        raise
    except OSError as exc:
        logger.f("error", exc).warn(
            f"Failed to look up rsync, fallback to {FALLBACK_RSYNC}"
        )
        rsync = FALLBACK_RSYNC
    else:
        logger.f("path", rsync).debug("Located rsync")

    return RsyncCommand(path=rsync, args=[rsync, *args])


def _execute(cmd: RsyncCommand) -> NoReturn:
    os.execve(cmd.path, cmd.args, os.environ)
    raise OSError("exec returned unexpectedly")


def exec_rsync(options: RsyncOptions) -> NoReturn:
    """Replace the current process with rsync run according to ``options``."""
    _execute(command(arguments(options)))


def raw_exec(args: Sequence[str]) -> NoReturn:
    """Replace the current process with rsync run with ``args`` unchanged."""
    _execute(command(args))