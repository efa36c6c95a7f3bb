"""Top-level exodus-rsync run: mirror fallback or exodus-gw publish.

Stages:
    resolve environment → mirror fallback
                        → walk → upload → create publish → add items → commit

Each stage runs once; the first failure ends the run with a stage-specific
exit code. Nothing is retried or rolled back.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Protocol

from exodus_rsync.client.api import GatewayClient
from exodus_rsync.client.mirror import run_rsync
from exodus_rsync.client.publish import Publish, PublishManager, derive_web_uri
from exodus_rsync.client.storage import BlobStore
from exodus_rsync.client.types import (
    CancelScope,
    ClientInitError,
    ItemInput,
    MirrorError,
    OperationCancelled,
    PublishError,
    SyncArgs,
    SyncError,
    SyncItem,
    Uploaded,
    WalkError,
)
from exodus_rsync.client.upload import BlobStoreLike, UploadCoordinator
from exodus_rsync.client.walk import walk
from exodus_rsync.core.config import ConfigError, Environment, GlobalConfig, load_config

logger = logging.getLogger(__name__)


class ExitCode(IntEnum):
    """Process exit status for each way a run can end."""

    OK = 0
    CONFIG = 23
    UPLOAD = 25
    ADD_ITEMS = 51
    CREATE_PUBLISH = 62
    COMMIT = 71
    WALK = 73
    MIRROR = 94
    CLIENT_INIT = 101
    CANCELLED = 130


class Stage(Enum):
    """Stages of a run, in order."""

    LOAD_CONFIG = "load config"
    RESOLVE_ENVIRONMENT = "resolve environment"
    MIRROR_FALLBACK = "mirror fallback"
    INIT_CLIENT = "initialize client"
    WALK = "walk"
    UPLOAD = "upload"
    CREATE_PUBLISH = "create publish"
    ADD_ITEMS = "add items"
    COMMIT = "commit"
    DONE = "done"


class PublisherLike(Protocol):
    def create(self) -> Publish: ...

    def add_items(self, publish: Publish, items: Sequence[ItemInput]) -> int: ...

    def commit(self, publish: Publish) -> None: ...

    def close(self) -> None: ...


def default_publisher(env: Environment, scope: CancelScope) -> PublishManager:
    """Create a PublishManager talking to env's exodus-gw."""
    return PublishManager(GatewayClient(env, scope))


@dataclass
class Dependencies:
    """Collaborators of a SyncEngine, replaceable in tests."""

    load_config: Callable[[str | None], GlobalConfig] = load_config
    new_blob_store: Callable[[Environment, CancelScope], BlobStoreLike] = BlobStore
    new_publisher: Callable[[Environment, CancelScope], PublisherLike] = default_publisher
    walk: Callable[[str], Iterable[SyncItem]] = walk
    mirror: Callable[[SyncArgs, CancelScope], int] = run_rsync


@dataclass
class RunReport:
    """Outcome of one run.

    Attributes:
        exit_code: Process exit status.
        stage: Last stage entered (the failing stage on error).
        uploaded: Number of items whose blob was uploaded.
        present: Number of items whose blob already existed.
        publish_id: ID of the created publish, if any.
        items_added: Number of items added to the publish, once known.
        items: Publish items built from the upload outcomes.
    """

    exit_code: int = ExitCode.OK
    stage: Stage = Stage.LOAD_CONFIG
    uploaded: int = 0
    present: int = 0
    publish_id: str | None = None
    items_added: int | None = None
    items: list[ItemInput] = field(default_factory=list, repr=False)


class SyncEngine:
    """Runs exodus-rsync for one set of arguments."""

    def __init__(self, deps: Dependencies | None = None) -> None:
        """Initialize the engine.

        Args:
            deps: Collaborators; real implementations are used if None.
        """
        self._deps = deps or Dependencies()

    def run(self, args: SyncArgs, scope: CancelScope | None = None) -> RunReport:
        """Run to completion and report how it ended.

        Args:
            args: Parsed command line arguments.
            scope: Cancellation scope for the whole run.

        Returns:
            RunReport; exit_code is non-zero if any stage failed.
        """
        scope = scope or CancelScope()
        report = RunReport()

        try:
            self._run(args, scope, report)
        except OperationCancelled as e:
            logger.error(f"Stopped during {report.stage.value}: {e}")
            report.exit_code = ExitCode.CANCELLED

        return report

    def _fail(self, report: RunReport, code: ExitCode, message: str) -> None:
        logger.error(f"{report.stage.value} failed: {message}")
        report.exit_code = code

    def _run(self, args: SyncArgs, scope: CancelScope, report: RunReport) -> None:
        deps = self._deps

        try:
            config = deps.load_config(args.conf or None)
        except ConfigError as e:
            self._fail(report, ExitCode.CONFIG, f"can't load config: {e}")
            return

        report.stage = Stage.RESOLVE_ENVIRONMENT
        env = config.environment_for_dest(args.dest)

        if env is None:
            # Not an exodus destination; just run rsync
            report.stage = Stage.MIRROR_FALLBACK
            try:
                report.exit_code = deps.mirror(args, scope)
            except MirrorError as e:
                self._fail(report, ExitCode.MIRROR, f"can't exec rsync: {e}")
                return
            report.stage = Stage.DONE
            return

        logger.debug(f"Using environment {env.prefix} (gwenv {env.gwenv})")

        if args.dry_run:
            self._plan(args, report)
            return

        report.stage = Stage.INIT_CLIENT
        try:
            store = deps.new_blob_store(env, scope)
            publisher = deps.new_publisher(env, scope)
        except ClientInitError as e:
            self._fail(report, ExitCode.CLIENT_INIT, f"can't initialize exodus-gw client: {e}")
            return

        try:
            self._publish(args, env, scope, store, publisher, report)
        finally:
            publisher.close()

    def _walk(self, args: SyncArgs, report: RunReport) -> list[SyncItem] | None:
        report.stage = Stage.WALK
        try:
            return list(self._deps.walk(args.src))
        except (WalkError, OSError) as e:
            self._fail(report, ExitCode.WALK, f"can't read files for sync from {args.src}: {e}")
            return None

    def _item_input(self, args: SyncArgs, item: SyncItem) -> ItemInput:
        return ItemInput(
            web_uri=derive_web_uri(args.src, args.dest_path, item.src_path),
            object_key=item.key,
        )

    def _plan(self, args: SyncArgs, report: RunReport) -> None:
        """Report what a publish would contain without any remote call."""
        items = self._walk(args, report)
        if items is None:
            return

        for item in items:
            item_input = self._item_input(args, item)
            report.items.append(item_input)
            logger.info(f"Would publish {item_input.web_uri} ({item_input.object_key})")

        report.stage = Stage.DONE
        logger.info(
            f"Dry run: {len(report.items)} item(s) would be published, "
            "nothing was uploaded or committed"
        )

    def _publish(
        self,
        args: SyncArgs,
        env: Environment,
        scope: CancelScope,
        store: BlobStoreLike,
        publisher: PublisherLike,
        report: RunReport,
    ) -> None:
        items = self._walk(args, report)
        if items is None:
            return

        report.stage = Stage.UPLOAD
        coordinator = UploadCoordinator(store, workers=env.upload_threads, scope=scope)
        try:
            for outcome in coordinator.iter_outcomes(items):
                if isinstance(outcome, Uploaded):
                    report.uploaded += 1
                else:
                    report.present += 1
                report.items.append(self._item_input(args, outcome.item))
        except OperationCancelled:
            raise
        except (SyncError, OSError) as e:
            self._fail(report, ExitCode.UPLOAD, f"can't upload files: {e}")
            return

        logger.info(f"Completed uploads: {report.uploaded} uploaded, {report.present} existing")

        report.stage = Stage.CREATE_PUBLISH
        try:
            publish = publisher.create()
        except PublishError as e:
            self._fail(report, ExitCode.CREATE_PUBLISH, f"can't create publish: {e}")
            return
        report.publish_id = publish.id
        logger.info(f"Created publish {publish.id}")

        report.stage = Stage.ADD_ITEMS
        try:
            report.items_added = publisher.add_items(publish, report.items)
        except PublishError as e:
            self._fail(report, ExitCode.ADD_ITEMS, f"can't add items to publish {publish.id}: {e}")
            return
        logger.info(f"Added {report.items_added} item(s) to publish {publish.id}")

        report.stage = Stage.COMMIT
        try:
            publisher.commit(publish)
        except PublishError as e:
            self._fail(
                report,
                ExitCode.COMMIT,
                f"can't commit publish {publish.id}, its state is unknown: {e}",
            )
            return

        report.stage = Stage.DONE
        logger.info(f"Completed successfully! Published {len(report.items)} item(s)")
