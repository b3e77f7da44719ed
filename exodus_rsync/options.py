"""Options accepted on the command line, mirroring rsync's own."""

from __future__ import annotations

from dataclasses import dataclass, field


def _filter_rule(rule: str) -> tuple[str, str] | None:
    """Split a filter rule into ('+' or '-', pattern), or None for other rules."""
    rule = rule.strip()
    head, sep, pattern = rule.partition(" ")
    if not sep:
        if len(rule) > 2 and rule[0] in "+-" and rule[1] == "_":
            return rule[0], rule[2:]
        return None
    if head[:1] in ("+", "-"):
        return head[0], pattern
    kind = {"exclude": "-", "include": "+"}.get(head.split(",", 1)[0])
    if kind is None:
        return None
    return kind, pattern


@dataclass(kw_only=True)
class RsyncOptions:
    """The rsync arguments understood by this program."""

    src: str = ""
    dest: str = ""
    verbose: int = 0
    archive: bool = False
    recursive: bool = False
    relative: bool = False
    links: bool = False
    copy_links: bool = False
    keep_dirlinks: bool = False
    hard_links: bool = False
    perms: bool = False
    executability: bool = False
    acls: bool = False
    xattrs: bool = False
    owner: bool = False
    group: bool = False
    devices: bool = False
    specials: bool = False
    times: bool = False
    atimes: bool = False
    crtimes: bool = False
    omit_dir_times: bool = False
    dry_run: bool = False
    rsh: str = ""
    ignore_existing: bool = False
    delete: bool = False
    prune_empty_dirs: bool = False
    timeout: int = 0
    compress: bool = False
    filter: list[str] = field(default_factory=list)
    exclude: list[str] = field(default_factory=list)
    include: list[str] = field(default_factory=list)
    files_from: str = ""
    stats: bool = False
    itemize_changes: bool = False

    def _from_filters(self, kind: str) -> list[str]:
        out = []
        for rule in self.filter:
            parsed = _filter_rule(rule)
            if parsed is not None and parsed[0] == kind:
                out.append(parsed[1])
        return out

    def excluded(self) -> list[str]:
        """Exclude patterns: those from --filter rules, then those from --exclude."""
        return self._from_filters("-") + list(self.exclude)

    def included(self) -> list[str]:
        """Include patterns: those from --filter rules, then those from --include."""
        return self._from_filters("+") + list(self.include)