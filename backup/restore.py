"""Restore the live store from a user supplied snapshot or archive."""
from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple

from core.assets import AssetStore

from .bundle import AssetBundler
from .codec import SnapshotCodec
from .errors import BackupError, FormatError
from .logs import BackupLogger
from .types import RestoreResult, Snapshot

IDLE = "idle"
VALIDATING = "validating"
APPLYING = "applying"
DONE = "done"
REJECTED = "rejected"
FAILED = "failed"

RESTORE_MODES = ("snapshot", "archive")


class RestoreExecutor:
    """Validate incoming bytes fully, then replace the store and its assets.

    ``validating`` never touches live data; a rejected file leaves the store
    exactly as it was. If the engine refuses bytes that passed validation, or the
    restored image cannot be saved, the previous image is loaded back and the
    restore ends ``failed``.
    """

    def __init__(
        self,
        *,
        codec: SnapshotCodec,
        logger: BackupLogger,
        bundler: Optional[AssetBundler] = None,
        assets: Optional[AssetStore] = None,
        owner_id: Optional[str] = None,
        safety_dir: Optional[Path] = None,
    ) -> None:
        self._codec = codec
        self._logger = logger
        self._bundler = bundler or AssetBundler(logger=logger)
        self._assets = assets
        self._owner_id = owner_id
        self._safety_dir = Path(safety_dir) if safety_dir else None
        self.state = IDLE

    # ------------------------------------------------------------------
    def _validate(self, data: bytes, mode: str) -> Tuple[Snapshot, List[Tuple[str, bytes]], List[str]]:
        if mode == "snapshot":
            return self._codec.validate(data), [], []
        unpacked = self._bundler.unpack(data)
        snapshot = self._codec.validate(unpacked.snapshot)
        return snapshot, unpacked.assets, list(unpacked.lost_assets)

    def _write_safety_copy(self, previous: Snapshot) -> Optional[Path]:
        if self._safety_dir is None:
            return None
        self._safety_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S-%f")
        target = self._safety_dir / f"pre-restore-{stamp}.db"
        counter = 1
        while target.exists():
            target = self._safety_dir / f"pre-restore-{stamp}-{counter}.db"
            counter += 1
        target.write_bytes(previous.data)
        self._logger.info("safety_copy", path=str(target), size=len(previous))
        return target

    def _restore_assets(self, assets: List[Tuple[str, bytes]], lost: List[str]) -> int:
        if self._assets is None:
            return 0
        written = 0
        for name, payload in assets:
            try:
                self._assets.write(name, payload, self._owner_id)
            except (OSError, ValueError) as exc:
                lost.append(name)
                self._logger.warning("asset_restore_failed", name=name, err_msg=str(exc))
                continue
            written += 1
        return written

    def _roll_back(
        self, previous: Snapshot, error: BackupError, *, mode: str, safety_path: Optional[Path]
    ) -> RestoreResult:
        try:
            self._codec.apply(previous)
        except (BackupError, OSError) as exc:
            self._logger.failure(
                "restore_rollback_failed",
                "restore",
                exc,
                mode=mode,
                safety_path=str(safety_path) if safety_path else None,
            )
            return RestoreResult(state=FAILED, error=error, safety_path=safety_path)
        self._logger.info("restore_rolled_back", mode=mode)
        return RestoreResult(state=FAILED, error=error, safety_path=safety_path)

    # ------------------------------------------------------------------
    def restore(self, data: bytes, mode: str = "snapshot") -> RestoreResult:
        if mode not in RESTORE_MODES:
            raise ValueError(f"unknown restore mode: {mode!r}")

        self.state = VALIDATING
        self._logger.event(event="restore_start", phase="restore", ok=True, mode=mode, size=len(data))
        try:
            snapshot, assets, lost = self._validate(data, mode)
        except FormatError as exc:
            self.state = REJECTED
            self._logger.failure("restore_rejected", "restore", exc, mode=mode)
            return RestoreResult(state=REJECTED, error=exc)

        # Point of no return: everything below mutates live data.
        self.state = APPLYING
        try:
            previous = self._codec.export()
            safety_path = self._write_safety_copy(previous)
        except (BackupError, OSError) as exc:
            self.state = FAILED
            self._logger.failure("restore_failed", "restore", exc, mode=mode, stage="safety_copy")
            error = exc if isinstance(exc, BackupError) else BackupError(f"could not save safety copy: {exc}")
            return RestoreResult(state=FAILED, error=error)

        try:
            self._codec.apply(snapshot)
        except (BackupError, OSError) as exc:
            self._logger.failure("restore_failed", "restore", exc, mode=mode, stage="apply")
            error = exc if isinstance(exc, BackupError) else BackupError(f"could not save restored data: {exc}")
            self.state = FAILED
            return self._roll_back(previous, error, mode=mode, safety_path=safety_path)

        restored = self._restore_assets(assets, lost)
        if lost:
            self._logger.warning("restore_partial_asset_loss", lost=len(lost), names=lost)
        self.state = DONE
        self._logger.event(
            event="restore_complete",
            phase="restore",
            ok=True,
            mode=mode,
            assets=restored,
            lost_assets=len(lost),
        )
        return RestoreResult(state=DONE, lost_assets=lost, restored_assets=restored, safety_path=safety_path)


__all__ = [
    "APPLYING",
    "DONE",
    "FAILED",
    "IDLE",
    "REJECTED",
    "RESTORE_MODES",
    "RestoreExecutor",
    "VALIDATING",
]
