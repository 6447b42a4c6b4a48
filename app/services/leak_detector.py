"""Leak detection batch job.

For every user with a push token, compare the newest consumption sample
with the mean of the few before it:

    leak suspected  iff  latest > mean(older samples) * multiplier

Users are evaluated concurrently; one user's failure never stops the rest.
"""

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal

from app.services.notifier import PushNotifier
from app.services.reading_store import PushDestination, ReadingStore

logger = logging.getLogger(__name__)

LEAK_ALERT_CATEGORY = "leak_alert"
DEFAULT_SAMPLE_SIZE = 5
DEFAULT_MULTIPLIER = Decimal("1.5")


@dataclass(frozen=True)
class LeakVerdict:
    """Result of applying the leak heuristic to one user's samples."""

    latest: Decimal
    baseline_avg: Decimal
    suspected: bool


@dataclass
class LeakRunSummary:
    """Counters for one detector run."""

    users_checked: int = 0
    alerts_sent: int = 0
    delivery_failed: int = 0
    skipped: int = 0
    suppressed: int = 0
    failed: int = 0
    flagged_user_ids: list[int] = field(default_factory=list)


def evaluate_leak(
    samples: Sequence[int | Decimal],
    multiplier: Decimal = DEFAULT_MULTIPLIER,
) -> LeakVerdict | None:
    """Apply the leak heuristic to samples ordered newest first.

    Returns None when there is no verdict: fewer than two samples, or a
    baseline average that is zero or negative.
    """
    if len(samples) < 2:
        return None

    values = [Decimal(value or 0) for value in samples]
    latest, older = values[0], values[1:]
    baseline_avg = sum(older, Decimal("0")) / len(older)
    if baseline_avg <= 0:
        return None

    return LeakVerdict(
        latest=latest,
        baseline_avg=baseline_avg,
        suspected=latest > baseline_avg * multiplier,
    )


def build_leak_message(verdict: LeakVerdict) -> tuple[str, str, dict]:
    """Title, body and data payload for a leak alert."""
    latest = int(verdict.latest)
    avg = verdict.baseline_avg
    title = "Water Leak Alert"
    body = (
        f"Your latest consumption ({latest} cu.m.) is much higher than "
        f"recent average ({avg:.1f} cu.m.). Please check for leaks."
    )
    data = {
        "type": LEAK_ALERT_CATEGORY,
        "latest": latest,
        "baseline_avg": float(round(avg, 2)),
    }
    return title, body, data


class LeakDetector:
    """Scans recent consumption for every reachable user."""

    def __init__(
        self,
        store: ReadingStore,
        notifier: PushNotifier,
        sample_size: int = DEFAULT_SAMPLE_SIZE,
        multiplier: Decimal = DEFAULT_MULTIPLIER,
        max_concurrency: int = 10,
        cooldown: timedelta | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.sample_size = sample_size
        self.multiplier = multiplier
        self.max_concurrency = max_concurrency
        self.cooldown = cooldown
        self.clock = clock

    async def run_once(self) -> LeakRunSummary:
        """Evaluate every user with a push destination."""
        logger.info("Running leak detection...")
        summary = LeakRunSummary()

        destinations = await self.store.get_users_with_push_destination()
        semaphore = asyncio.Semaphore(max(1, self.max_concurrency))

        async def _guarded(destination: PushDestination) -> None:
            async with semaphore:
                try:
                    await self.check_user(destination, summary)
                except Exception:
                    summary.failed += 1
                    logger.exception(
                        "Error processing user %s in leak detection loop",
                        destination.user_id,
                    )

        await asyncio.gather(*(_guarded(d) for d in destinations))

        logger.info(
            "Leak detection finished: checked=%s alerts=%s undelivered=%s skipped=%s "
            "suppressed=%s failed=%s",
            summary.users_checked,
            summary.alerts_sent,
            summary.delivery_failed,
            summary.skipped,
            summary.suppressed,
            summary.failed,
        )
        return summary

    async def check_user(self, destination: PushDestination, summary: LeakRunSummary) -> None:
        """Evaluate one user and alert if a leak is suspected."""
        summary.users_checked += 1
        samples = await self.store.get_recent_consumption(destination.user_id, self.sample_size)

        verdict = evaluate_leak(samples, self.multiplier)
        if verdict is None:
            summary.skipped += 1
            return
        if not verdict.suspected:
            return

        logger.warning(
            "Leak suspected for user %s: latest %s, avg %.2f",
            destination.user_id,
            verdict.latest,
            verdict.baseline_avg,
        )
        summary.flagged_user_ids.append(destination.user_id)

        if await self._in_cooldown(destination.user_id):
            summary.suppressed += 1
            return

        title, body, data = build_leak_message(verdict)
        outcome = await self.notifier.notify(
            destination.token, destination.user_id, title, body, data
        )
        if outcome.delivered:
            summary.alerts_sent += 1
        else:
            summary.delivery_failed += 1

    async def _in_cooldown(self, user_id: int) -> bool:
        """Whether a previous alert is recent enough to suppress this one."""
        if not self.cooldown:
            return False
        last_sent = await self.store.get_last_notification_at(user_id, LEAK_ALERT_CATEGORY)
        return last_sent is not None and self.clock() - last_sent < self.cooldown
