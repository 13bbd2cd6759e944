"""
Broadcast coordination.

Provides:
- Request validation before any network call
- Target resolution against enabled platforms and stored credentials
- Concurrent per-target publishing with failure isolation
- Aggregation into an ordered BroadcastResult
"""

import asyncio
import logging
from typing import List, Mapping, Optional, Sequence, Set

from .credentials.lifecycle import TokenLifecycleManager
from .exceptions import CompositeError, ErrorCode, ValidationError
from .media import MediaResolver
from .platforms.common import PlatformPublisher, failure_from_exception
from .types.social import (
    MAX_CONTENT_LENGTH,
    BroadcastResult,
    MediaAsset,
    NormalizedPost,
    PostRequest,
    PublishOutcome,
    PublishSuccess,
    SocialPlatform,
    TargetState,
)
from .utils.logging import Timer, set_platform_context

logger = logging.getLogger(__name__)


class BroadcastCoordinator:
    """
    Publishes one post to every resolved target.

    A failing target never cancels its siblings; every target ends up as
    exactly one entry of the result, in resolution order.
    """

    def __init__(
        self,
        lifecycle: TokenLifecycleManager,
        publishers: Mapping[SocialPlatform, PlatformPublisher],
        media: MediaResolver,
        max_concurrent_targets: int = 4,
        max_content_length: int = MAX_CONTENT_LENGTH,
    ):
        self.lifecycle = lifecycle
        self.publishers = dict(publishers)
        self.media = media
        self.max_concurrent_targets = max_concurrent_targets
        self.max_content_length = max_content_length
        self._background: Set["asyncio.Task[BroadcastResult]"] = set()

    @property
    def enabled_platforms(self) -> List[SocialPlatform]:
        return list(self.publishers)

    async def broadcast(self, user_id: str, request: PostRequest) -> BroadcastResult:
        """
        Publish a post to its targets.

        Raises:
            ValidationError: Invalid content, unknown media or no targets.
                Raised before any platform is contacted.
            CredentialStoreError: The store failed while resolving targets.
        """
        post = request.validate_request(self.max_content_length)
        targets = await self.resolve_targets(user_id, request.targets)
        assets = list(await self.media.resolve(post.images)) if post.images else []

        logger.info(
            f"Broadcasting to {len(targets)} targets",
            extra={"targets": [t.value for t in targets], "images": len(assets)},
        )

        semaphore = asyncio.Semaphore(self.max_concurrent_targets)

        async def run_target(platform: SocialPlatform) -> PublishOutcome:
            async with semaphore:
                return await self._publish_target(user_id, platform, post, assets)

        outcomes = await asyncio.gather(*(run_target(p) for p in targets))
        result = BroadcastResult(entries=list(zip(targets, outcomes)))

        logger.info(
            f"Broadcast {result.status.value}: "
            f"{len(result.successes)} published, {len(result.failures)} failed"
        )
        return result

    async def broadcast_detached(self, user_id: str, request: PostRequest) -> BroadcastResult:
        """
        Run broadcast() so that a cancelled caller does not stop it.

        Posts already in flight finish on the platforms; the outcome is
        logged when nobody is left to receive it.
        """
        task = asyncio.ensure_future(self.broadcast(user_id, request))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            logger.warning("Caller went away, broadcast continues in background")
            task.add_done_callback(_log_abandoned_broadcast)
            raise

    async def resolve_targets(
        self,
        user_id: str,
        requested: Optional[Sequence[str]],
    ) -> List[SocialPlatform]:
        """
        Work out which platforms a post goes to.

        An explicit list is matched case-insensitively against the enabled
        platforms; unknown or disabled names are dropped. Without a list,
        every enabled platform the user has a credential for is used.

        Raises:
            ValidationError: If nothing is left.
        """
        enabled = self.enabled_platforms

        if requested:
            candidates: List[SocialPlatform] = []
            for name in requested:
                platform = SocialPlatform.parse(name)
                if platform is None or platform not in enabled:
                    logger.warning(f"Ignoring unknown or disabled target {name!r}")
                    continue
                candidates.append(platform)
        else:
            connected = set(await self.lifecycle.store.list_platforms(user_id))
            candidates = [p for p in enabled if p in connected]

        targets = list(dict.fromkeys(candidates))
        if not targets:
            raise ValidationError(
                message="No targets to publish to",
                field="targets",
                error_code=ErrorCode.NO_TARGETS,
            )
        return targets

    async def _publish_target(
        self,
        user_id: str,
        platform: SocialPlatform,
        post: NormalizedPost,
        assets: Sequence[MediaAsset],
    ) -> PublishOutcome:
        set_platform_context(platform.value)
        _log_state(platform, TargetState.PENDING)

        try:
            token = await self.lifecycle.ensure_valid(
                user_id,
                platform,
                on_refresh=lambda: _log_state(platform, TargetState.CREDENTIAL_REFRESHING),
            )
        except Exception as e:
            _log_state(platform, TargetState.CREDENTIAL_INVALID)
            return _finish(failure_from_exception(platform, e))

        _log_state(platform, TargetState.CREDENTIAL_READY)

        _log_state(platform, TargetState.PUBLISHING)
        try:
            with Timer(f"publish {platform.value}", logger):
                outcome = await self.publishers[platform].publish(post, token, assets)
        except Exception as e:
            outcome = failure_from_exception(platform, e)
        return _finish(outcome)


def raise_for_failures(result: BroadcastResult) -> BroadcastResult:
    """
    Raise CompositeError when any target failed.

    The error lists every per-target response, successes included, and
    carries the highest failure status.
    """
    failures = result.failures
    if not failures:
        return result

    modules = ", ".join(f.platform.value for f in failures)
    raise CompositeError(
        responses=result.to_responses(),
        status_code=result.max_failure_status or 500,
        message=f"Failed to create post via {modules}.",
        broadcast_status=result.status.value,
    )


def _log_state(platform: SocialPlatform, state: TargetState) -> None:
    logger.debug(f"{platform.value} -> {state.value}", extra={"target_state": state.value})


def _finish(outcome: PublishOutcome) -> PublishOutcome:
    if isinstance(outcome, PublishSuccess):
        _log_state(outcome.platform, TargetState.PUBLISHED)
        logger.info(f"Published to {outcome.platform.value}: {outcome.post_id}")
    else:
        _log_state(outcome.platform, TargetState.FAILED)
        logger.warning(
            f"Publishing to {outcome.platform.value} failed "
            f"({outcome.kind.value}, HTTP {outcome.status}): {outcome.message}",
            extra={"raw_body": (outcome.raw_body or "")[:500]},
        )
    return outcome


def _log_abandoned_broadcast(task: "asyncio.Task[BroadcastResult]") -> None:
    if task.cancelled():
        logger.warning("Abandoned broadcast was cancelled")
        return
    error = task.exception()
    if error is not None:
        logger.warning(f"Abandoned broadcast failed: {error!r}")
        return
    result = task.result()
    logger.info(
        f"Abandoned broadcast finished {result.status.value}",
        extra={"responses": result.to_responses()},
    )
