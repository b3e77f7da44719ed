"""Publish and task objects of the gateway HTTP API."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, Sequence

from .logger import current_logger
from .syncutil import Cancelled, CancelToken

DRY_RUN_PUBLISH_ID = "abcd1234"


class GatewayError(Exception):
    """A request to the gateway failed or returned something unusable."""


class JsonRequester(Protocol):
    """Anything able to send a JSON request to the gateway and decode the reply."""

    def do_json_request(
        self,
        method: str,
        url: str,
        body: Any = None,
        headers: Mapping[str, list[str]] | None = None,
    ) -> Any: ...


def _idempotent_headers() -> dict[str, list[str]]:
    # Marks a request as safe to retry even though its method is not idempotent.
    return {"X-Idempotency-Key": []}


def _lowered(data: Any, what: str) -> dict[str, Any]:
    if not isinstance(data, Mapping):
        raise GatewayError(f"unexpected {what} in response: {data!r}")
    return {str(key).lower(): value for key, value in data.items()}


def _links(value: Any) -> dict[str, str]:
    if not isinstance(value, Mapping):
        return {}
    return {str(key): str(link) for key, link in value.items()}


@dataclass(frozen=True)
class ItemInput:
    """A single item to be added onto a publish."""

    web_uri: str
    object_key: str = ""
    content_type: str = ""
    link_to: str = ""

    def to_json(self) -> dict[str, str]:
        """Return the item in the form the gateway accepts."""
        return {
            "web_uri": self.web_uri,
            "object_key": self.object_key,
            "content_type": self.content_type,
            "link_to": self.link_to,
        }


@dataclass(kw_only=True)
class Task:
    """A task object in the gateway, such as the one behind a commit."""

    client: JsonRequester
    poll_interval: int
    id: str = ""
    publish_id: str = ""
    state: str = ""
    links: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_json(cls, client: JsonRequester, data: Any, *, poll_interval: int) -> Task:
        """Build a task from a decoded gateway response."""
        task = cls(client=client, poll_interval=poll_interval)
        task._update(data)
        return task

    def _update(self, data: Any) -> None:
        raw = _lowered(data, "task")
        if "id" in raw:
            self.id = str(raw["id"])
        for key in ("publishid", "publish_id"):
            if key in raw:
                self.publish_id = str(raw[key])
        if "state" in raw:
            self.state = str(raw["state"])
        if "links" in raw:
            self.links = _links(raw["links"])

    def _describe(self) -> str:
        return (
            f"{{ID:{self.id} PublishID:{self.publish_id} "
            f"State:{self.state} Links:{self.links}}}"
        )

    def refresh(self) -> None:
        """Reload the state of this task from the gateway."""
        url = self.links.get("self")
        if url is None:
            raise GatewayError(f"task object is missing 'self' link: {self._describe()}")
        current_logger().f("url", url).debug("polling task")
        self._update(self.client.do_json_request("GET", url, None, None))

    def wait(self, cancel: CancelToken | None = None) -> None:
        """Poll the task until it reaches a terminal state.

        Returns if the task completed; raises GatewayError if it failed or
        could not be polled, and Cancelled if ``cancel`` is cancelled.
        """
        logger = current_logger()
        delay = self.poll_interval / 1000

        while True:
            if self.state == "COMPLETE":
                logger.f("task", self.id).info("Task completed")
                return
            if self.state == "FAILED":
                logger.f("task", self.id).info("Task failed")
                raise GatewayError(f"publish task {self.id} failed")

            # Not in a terminal state: query it again soon.
            if cancel is not None:
                cancel.raise_if_cancelled()
                if cancel.wait(delay):
                    raise Cancelled()
            else:
                time.sleep(delay)

            try:
                self.refresh()
            except Exception as exc:
                raise GatewayError(f"polling task {self.id}: {exc}") from exc


@dataclass(kw_only=True)
class Publish:
    """A publish object in the gateway."""

    client: JsonRequester
    batch_size: int
    poll_interval: int
    id: str = ""
    env: str = ""
    state: str = ""
    links: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_json(
        cls, client: JsonRequester, data: Any, *, batch_size: int, poll_interval: int
    ) -> Publish:
        """Build a publish from a decoded gateway response."""
        raw = _lowered(data, "publish")
        return cls(
            client=client,
            batch_size=batch_size,
            poll_interval=poll_interval,
            id=str(raw.get("id", "")),
            env=str(raw.get("env", "")),
            state=str(raw.get("state", "")),
            links=_links(raw.get("links")),
        )

    def _describe(self) -> str:
        return f"{{ID:{self.id} Env:{self.env} State:{self.state} Links:{self.links}}}"

    def add_items(self, items: Sequence[ItemInput]) -> None:
        """Add all of ``items`` onto this publish, in batches of ``batch_size``."""
        url = self.links.get("self")
        if url is None:
            raise GatewayError(f"publish object is missing 'self' link: {self._describe()}")
        if self.batch_size < 1:
            raise ValueError(f"batch size must be positive, not {self.batch_size}")

        logger = current_logger()
        total = math.ceil(len(items) / self.batch_size)

        for number, start in enumerate(range(0, len(items), self.batch_size), start=1):
            batch = items[start : start + self.batch_size]
            # Logged at info level as a gradual progress indicator.
            logger.f("currentBatch", number, "totalBatches", total).info(
                "Preparing the next batch of items"
            )
            for item in batch:
                logger.f("item", item, "url", url).debug("Adding to publish object")

            self.client.do_json_request(
                "PUT", url, [item.to_json() for item in batch], _idempotent_headers()
            )

    def commit(self, mode: str = "", cancel: CancelToken | None = None) -> None:
        """Commit this publish and wait until the commit has completed.

        ``mode`` is the requested commit mode, or empty for the default.
        """
        entry = current_logger().f("publish", self.id, "mode", mode)
        with entry.trace("Committing publish"):
            url = self.links.get("commit")
            if url is None:
                raise GatewayError(f"publish not eligible for commit: {self._describe()}")
            if mode:
                url = f"{url}?commit_mode={mode}"

            data = self.client.do_json_request("POST", url, None, _idempotent_headers())
            task = Task.from_json(self.client, data, poll_interval=self.poll_interval)
            task.wait(cancel)


@dataclass(frozen=True)
class DryRunPublish:
    """A publish which accepts every operation and does nothing."""

    id: str = DRY_RUN_PUBLISH_ID

    def add_items(self, items: Sequence[ItemInput]) -> None:
        """Check ``items`` and record them in the log without sending them anywhere."""
        logger = current_logger()
        for item in items:
            if not isinstance(item, ItemInput):
                raise TypeError(f"expected ItemInput, not {type(item).__name__}")
            logger.f("item", item, "publish", self.id).debug("Dry-run: not adding item")

    def commit(self, mode: str = "", cancel: CancelToken | None = None) -> None:
        """Pretend to commit; only a cancelled token makes this fail."""
        if cancel is not None:
            cancel.raise_if_cancelled()