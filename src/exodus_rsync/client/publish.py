"""exodus-gw publish transactions.

A publish is created empty, filled with web URI to object key mappings and
then committed, at which point all of its items become visible at once.

This module provides:
- Publish: A remote publish and its API links
- PublishManager: create / add_items / commit against exodus-gw
- derive_web_uri: Map a local source path to its published URI
"""

from __future__ import annotations

import logging
import posixpath
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from exodus_rsync.client.api import GatewayClient
from exodus_rsync.client.types import ItemInput, PublishError, TransportError

logger = logging.getLogger(__name__)

TASK_COMPLETE = "COMPLETE"
TASK_FAILED = "FAILED"


def derive_web_uri(src_tree: str, dest_tree: str, src_path: str) -> str:
    """Compute the published URI of a file.

    Both trees and the path are normalized first, so redundant separators
    and trailing slashes make no difference: a source of "/a/b" and "/a/b/"
    both publish the contents of b. A path equal to the source tree (a
    single-file source) is published under its basename.

    Args:
        src_tree: Root of the local source tree.
        dest_tree: Root of the destination tree.
        src_path: Path of a file under src_tree.

    Returns:
        URI of the file under dest_tree.
    """
    clean_tree = posixpath.normpath(src_tree)
    clean_path = posixpath.normpath(src_path)

    if clean_path == clean_tree:
        rel_path = posixpath.basename(clean_path)
    elif clean_tree == "/":
        rel_path = clean_path.lstrip("/")
    else:
        rel_path = clean_path.removeprefix(clean_tree + "/").lstrip("/")

    return posixpath.normpath(posixpath.join(dest_tree, rel_path))


@dataclass
class Publish:
    """A publish created on exodus-gw.

    Attributes:
        id: Publish ID assigned by exodus-gw.
        links: API links returned by exodus-gw ("self", "commit").
    """

    id: str
    links: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Publish:
        """Create from API response dictionary."""
        return cls(id=str(data["id"]), links=dict(data.get("links") or {}))


class PublishManager:
    """Runs the publish lifecycle against one environment's exodus-gw.

    Nothing here retries or rolls back: a failed commit leaves the publish
    in an unknown state on the server.
    """

    def __init__(self, gateway: GatewayClient) -> None:
        """Initialize the publish manager.

        Args:
            gateway: Client for the environment's exodus-gw.
        """
        self._gateway = gateway
        self._env = gateway.env

    def _publish_url(self, publish: Publish) -> str:
        return publish.links.get("self") or f"/{self._env.gwenv}/publish/{publish.id}"

    def _commit_url(self, publish: Publish) -> str:
        return (
            publish.links.get("commit")
            or f"/{self._env.gwenv}/publish/{publish.id}/commit"
        )

    def create(self) -> Publish:
        """Create a new, empty publish.

        Raises:
            PublishError: If exodus-gw rejects the request.
        """
        try:
            data = self._gateway.request_json("POST", f"/{self._env.gwenv}/publish")
            publish = Publish.from_dict(data)
        except TransportError as e:
            raise PublishError(f"creating publish: {e}") from e
        except (KeyError, TypeError) as e:
            raise PublishError(f"creating publish: unexpected response: {e}") from e

        logger.debug(f"Created publish {publish.id}")
        return publish

    def add_items(self, publish: Publish, items: Sequence[ItemInput]) -> int:
        """Add items to a publish in a single request.

        Args:
            publish: Publish returned by create().
            items: Every item to publish.

        Returns:
            Number of items added.

        Raises:
            PublishError: If exodus-gw rejects the items.
        """
        try:
            self._gateway.request_json(
                "PUT",
                self._publish_url(publish),
                json=[item.to_dict() for item in items],
            )
        except TransportError as e:
            raise PublishError(
                f"adding items to publish {publish.id}: {e}", publish.id
            ) from e

        logger.debug(f"Added {len(items)} item(s) to publish {publish.id}")
        return len(items)

    def commit(self, publish: Publish) -> None:
        """Commit a publish and wait for the commit task to finish.

        Args:
            publish: Publish returned by create().

        Raises:
            PublishError: If the commit request or commit task fails. The
                publish may or may not have become visible.
        """
        try:
            task = self._gateway.request_json("POST", self._commit_url(publish))
        except TransportError as e:
            raise PublishError(
                f"committing publish {publish.id}: {e}", publish.id
            ) from e

        self._await_task(publish, task)
        logger.debug(f"Committed publish {publish.id}")

    def _await_task(self, publish: Publish, task: Any) -> None:
        """Poll a commit task until it completes or fails."""
        interval = self._env.gw_poll_interval / 1000.0

        while True:
            if not isinstance(task, dict):
                return

            state = task.get("state")
            task_url = (task.get("links") or {}).get("self")

            if state == TASK_COMPLETE or not task_url:
                return
            if state == TASK_FAILED:
                raise PublishError(
                    f"commit task {task.get('id')} for publish {publish.id} failed",
                    publish.id,
                )

            logger.debug(f"Commit task {task.get('id')} is {state}, waiting...")
            self._gateway.scope.sleep(interval)

            try:
                task = self._gateway.request_json("GET", task_url)
            except TransportError as e:
                raise PublishError(
                    f"polling commit task for publish {publish.id}: {e}", publish.id
                ) from e

    def close(self) -> None:
        """Close the underlying gateway client."""
        self._gateway.close()
