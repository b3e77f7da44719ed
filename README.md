# exodus_rsync

A library for preparing a local directory tree for publishing to a content
gateway, with rsync-compatible option handling. It can also hand a transfer
over to a real `rsync` binary. It uses only the standard library.

## What it provides

- **Logging** (`exodus_rsync.logger`): a small structured logger. Fields are
  attached with `Logger.f("key", value)`, which returns an `Entry` with
  `debug`, `info`, `warn`, `error` and a `trace` context manager that logs the
  duration (or the error) on exit. `new_logger(verbose)` gives a stdout logger
  whose threshold follows the `-v` count; `use_logger` and `current_logger`
  set and fetch the active logger. `logger_backend` chooses a `JournalHandler`,
  `SyslogHandler` or a file-backed `BaseHandler` from a `logger` setting of
  `journald`, `syslog` or `file:<path>` (otherwise journald when
  `journal_available()`, else syslog), and `Logger.start_platform_logger`
  adds that handler at the configured `log_level` (`none` disables it,
  `trace` means debug).
- **Cancellation** (`exodus_rsync.syncutil`): `CancelToken`, whose
  cancellation reaches every token derived from it, the `Cancelled` exception,
  and `run_with_group(n, fn, close)`, which runs `fn` in `n` threads and then
  `close`.
- **rsync options** (`exodus_rsync.options.RsyncOptions`): the rsync options
  understood here. `excluded()` and `included()` return patterns from
  `--filter` rules followed by those from `--exclude` / `--include`.
- **rsync invocation** (`exodus_rsync.rsync`): `arguments(options)` turns
  options back into an argument vector; `command(args)` returns an
  `RsyncCommand` for the real `rsync` on `PATH`, skipping this program if it
  is installed under that name, and falling back to `/usr/bin/rsync` if the
  lookup fails. `MissingRsyncError` is raised when only this program can be
  found. `exec_rsync(options)` and `raw_exec(args)` replace the current
  process with rsync.
- **Source tree walking** (`exodus_rsync.walk`): `walk(options, only_these,
  handler, cancel)` calls `handler` with a `SyncItem` for every file eligible
  for sync. Symlinks to directories are followed unless `options.links` is
  set, in which case symlinks are reported with `link_to` instead of a key.
  Files get a SHA-256 `key` (`file_hash`). rsync-style `--exclude` /
  `--include` patterns are applied by `filter_path` and `match_pattern`;
  a bad pattern raises `PatternError`.
- **Publishes and tasks** (`exodus_rsync.publish`): `Publish.add_items` sends
  `ItemInput` objects in batches of `batch_size`; `Publish.commit(mode,
  cancel)` posts a commit and waits on the resulting `Task`, polling every
  `poll_interval` milliseconds, raising `GatewayError` if the task fails.
  `DryRunPublish` accepts every operation and sends nothing.

## Example

```python
from exodus_rsync.logger import new_logger, use_logger
from exodus_rsync.options import RsyncOptions
from exodus_rsync.walk import walk

options = RsyncOptions(src="content/", dest="user@example.com:/dest",
                       exclude=["*.tmp"])
items = []
with use_logger(new_logger(1)):
    walk(options, [], items.append, None)

for item in items:
    print(item.src_path, item.key or f"-> {item.link_to}")
```

A `Publish` talks to the gateway through any object with a
`do_json_request(method, url, body, headers)` method that returns the decoded
JSON reply:

```python
from exodus_rsync.publish import ItemInput, Publish

publish = Publish.from_json(requester, reply, batch_size=100, poll_interval=1000)
publish.add_items([ItemInput("/content/file", "abc123", "text/plain", "")])
publish.commit("", None)
```

## What it does not do

The package has no HTTP client for the gateway: it does not upload blobs,
check whether they are already stored, or create or fetch publish objects
over the network; the caller supplies the object that performs JSON requests.
There is no diagnostics mode and no command-line program; the functions above
are used from Python.