"""Retention policy enforcement for backups."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, List, Sequence

from .destinations import DirectoryDestination
from .errors import BackupError, UserCancelled
from .ledger import HistoryLedger
from .logs import BackupLogger
from .types import BackupHistoryItem, CleanupInfo, CleanupResult, RetentionDecision


def _instant(created: datetime) -> datetime:
    # Naive timestamps are read as local time so they order against aware ones.
    return created if created.tzinfo is not None else created.astimezone()


@dataclass(slots=True)
class RetentionPolicy:
    """Keep the latest backup of each day for the most recent ``days_to_keep`` days."""

    days_to_keep: int = 5
    prompt_threshold: int = 10

    def decide(self, items: Sequence) -> RetentionDecision:
        """Split ``items`` (anything with a ``created`` datetime) into keep/delete.

        Days are taken from each timestamp as recorded, without converting
        between time zones. ``to_keep`` is newest first; ``to_delete`` keeps the
        input order.
        """

        if not items:
            return RetentionDecision(to_keep=[], to_delete=[])

        by_day: Dict[date, List] = {}
        for item in items:
            by_day.setdefault(item.created.date(), []).append(item)

        latest_per_day = [max(group, key=lambda entry: _instant(entry.created)) for group in by_day.values()]
        latest_per_day.sort(key=lambda entry: _instant(entry.created), reverse=True)
        to_keep = latest_per_day[: max(self.days_to_keep, 0)]
        keep_ids = {id(entry) for entry in to_keep}
        to_delete = [item for item in items if id(item) not in keep_ids]
        return RetentionDecision(to_keep=to_keep, to_delete=to_delete)

    def needs_cleanup(self, history: Sequence[BackupHistoryItem]) -> bool:
        return len(history) >= self.prompt_threshold

    def cleanup_info(self, history: Sequence[BackupHistoryItem]) -> CleanupInfo:
        decision = self.decide(history)
        return CleanupInfo(
            total_count=len(history),
            to_delete_count=len(decision.to_delete),
            to_keep_count=len(decision.to_keep),
            threshold=self.prompt_threshold,
        )


def cleanup_history(ledger: HistoryLedger, policy: RetentionPolicy, *, logger: BackupLogger) -> CleanupResult:
    """Drop redundant entries from the history log only; no file is touched."""

    decisions: List[RetentionDecision] = []

    def _prune(history: List[BackupHistoryItem]) -> List[BackupHistoryItem]:
        decision = policy.decide(history)
        decisions.append(decision)
        # decide() returns to_keep newest first, which is the ledger order.
        return decision.to_keep if decision.to_delete else history

    ledger.update(_prune)
    decision = decisions[0]
    logger.event(
        event="retention_applied",
        phase="retention",
        ok=True,
        mode="history",
        removed=len(decision.to_delete),
        kept=len(decision.to_keep),
    )
    return CleanupResult(
        status="ok",
        deleted=[item.filename for item in decision.to_delete],
        kept=[item.filename for item in decision.to_keep],
    )


def cleanup_directory(
    directory: DirectoryDestination,
    ledger: HistoryLedger,
    policy: RetentionPolicy,
    *,
    prefix: str,
    logger: BackupLogger,
) -> CleanupResult:
    """Delete redundant backup files from the chosen directory, then prune the log.

    Each file is removed on its own; a failed removal is recorded and the
    remaining files are still processed.
    """

    try:
        files = directory.list_backups(prefix)
    except UserCancelled as exc:
        logger.info("retention_cancelled", phase="retention", mode="directory")
        return CleanupResult(status="cancelled", error=exc)
    except BackupError as exc:
        logger.failure("retention_failed", "retention", exc, mode="directory")
        return CleanupResult(status="failed", error=exc)
    except OSError as exc:
        logger.failure("retention_failed", "retention", exc, mode="directory")
        return CleanupResult(status="failed", error=BackupError(f"could not list backups: {exc}"))

    decision = policy.decide(files)
    deleted: List[str] = []
    failed: List[str] = []
    for entry in decision.to_delete:
        try:
            directory.remove(entry.name)
        except OSError as exc:
            failed.append(entry.name)
            logger.warning("backup_remove_failed", name=entry.name, err_msg=str(exc))
            continue
        deleted.append(entry.name)
        logger.warning("backup_removed", name=entry.name, reason="retention")

    cleanup_history(ledger, policy, logger=logger)
    logger.event(
        event="retention_applied",
        phase="retention",
        ok=not failed,
        mode="directory",
        removed=len(deleted),
        failed=len(failed),
        kept=len(decision.to_keep),
    )
    return CleanupResult(
        status="ok",
        deleted=deleted,
        kept=[entry.name for entry in decision.to_keep],
        failed=failed,
    )


__all__ = ["RetentionPolicy", "cleanup_directory", "cleanup_history"]
