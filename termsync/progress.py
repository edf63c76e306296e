"""Progress observers injected into the executor, the batch runner and the coordinator."""
import logging
from typing import Dict, Optional

from tqdm import tqdm

from termsync.models import SyncResult


class SyncObserver:
    """No-op observer. Subclass and override the hooks you care about."""

    def on_phase_start(self, phase: str, item_count: int, batch_count: int) -> None:
        pass

    def on_batch(self, phase: str, index: int, total: int) -> None:
        """Called before batch ``index`` (1-based) of ``total`` is sent."""

    def on_phase_end(self, phase: str, batch_count: int) -> None:
        """Called once every batch of ``phase`` has succeeded."""

    def on_retry(self, attempt: int, max_attempts: int, wait_ms: int, error: Exception) -> None:
        pass

    def on_phase_error(self, phase: str, message: str) -> None:
        pass

    def on_complete(self, result: SyncResult) -> None:
        pass


class LoggingObserver(SyncObserver):
    """Reports progress through the termsync logger."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("termsync")

    def on_phase_start(self, phase: str, item_count: int, batch_count: int) -> None:
        self.logger.info("%s: %d item(s) in %d batch(es)", phase, item_count, batch_count)

    def on_batch(self, phase: str, index: int, total: int) -> None:
        self.logger.info("Processing batch %d/%d (%s)", index, total, phase)

    def on_retry(self, attempt: int, max_attempts: int, wait_ms: int, error: Exception) -> None:
        self.logger.warning(
            "Rate limited (attempt %d/%d): %s. Waiting %d ms before retry...",
            attempt, max_attempts, error, wait_ms
        )

    def on_phase_error(self, phase: str, message: str) -> None:
        self.logger.error("%s failed: %s", phase, message)

    def on_complete(self, result: SyncResult) -> None:
        self.logger.info(
            "Sync completed: created=%d updated=%d deleted=%d errors=%d (audit id %s)",
            result.created, result.updated, result.deleted, len(result.errors), result.audit_log_id
        )


class TqdmProgressObserver(LoggingObserver):
    """Draws one tqdm bar per phase; everything else is logged."""

    def __init__(self, logger: Optional[logging.Logger] = None, disable: bool = False):
        super().__init__(logger)
        self.disable = disable
        self._bars: Dict[str, tqdm] = {}

    def on_phase_start(self, phase: str, item_count: int, batch_count: int) -> None:
        super().on_phase_start(phase, item_count, batch_count)
        self._bars[phase] = tqdm(total=batch_count, desc=phase, unit="batch", disable=self.disable)

    def on_batch(self, phase: str, index: int, total: int) -> None:
        bar = self._bars.get(phase)
        if bar is None:
            super().on_batch(phase, index, total)
            return
        # The hook fires before a batch is sent; advance for the one before it.
        bar.n = index - 1
        bar.refresh()

    def on_phase_end(self, phase: str, batch_count: int) -> None:
        bar = self._bars.get(phase)
        if bar is not None:
            bar.n = batch_count
        self._close(phase)

    def on_phase_error(self, phase: str, message: str) -> None:
        self._close(phase)
        super().on_phase_error(phase, message)

    def on_complete(self, result: SyncResult) -> None:
        # Bars of finished phases are already closed; anything left was interrupted.
        for phase in list(self._bars):
            self._close(phase)
        super().on_complete(result)

    def _close(self, phase: str) -> None:
        bar = self._bars.pop(phase, None)
        if bar is not None:
            bar.refresh()
            bar.close()
