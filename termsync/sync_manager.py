"""
Plan creation and plan execution against a POEditor project.

Additions run first, then updates, then deletions, each phase driven through
the BatchOrchestrator. How a phase failure affects the remaining phases is an
explicit FailurePolicy.
"""
import enum
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from termsync.batching import BatchOrchestrator
from termsync.diff_engine import DiffOptions, build_translation_map, compute_plan
from termsync.errors import ApiError, BatchFailedError, TermSyncError
from termsync.models import LocalKey, MachineTranslateDirective, SyncError, SyncPlan, SyncResult
from termsync.poeditor_client import PoeditorClient
from termsync.progress import SyncObserver
from termsync.rate_limit import RateLimitedExecutor

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100
DEFAULT_RATE_LIMIT_DELAY = 20


class FailurePolicy(enum.Enum):
    # One failure boundary around all phases; the first failure ends the run.
    STOP_ON_FIRST_FAILURE = "stop"
    # Each phase has its own boundary; all three phases are always attempted.
    ISOLATE_PHASES = "isolate"


@dataclass(frozen=True)
class _Phase:
    name: str
    items: Sequence[Any]
    operation: Callable[[List[Any]], Awaitable[Dict[str, int]]]
    counter: str
    result_field: str


def resolve_mt_languages(plan: SyncPlan, directive: MachineTranslateDirective) -> List[str]:
    """
    Languages machine translation would be triggered for.

    An explicit language list is used as given; ``True`` means every language
    with at least one missing translation. Nothing is triggered when nothing is
    missing.
    """
    if not directive or plan.stats.missing <= 0:
        return []
    if isinstance(directive, (list, tuple)):
        return list(directive)
    return [lang for lang, keys in plan.missing_translations.items() if keys]


def new_audit_id() -> str:
    return str(uuid.uuid4())


class SyncManager:
    """Builds sync plans from remote state and executes them."""

    def __init__(self, client: Optional[PoeditorClient], project_id: str,
                 executor: Optional[RateLimitedExecutor] = None,
                 observer: Optional[SyncObserver] = None,
                 failure_policy: FailurePolicy = FailurePolicy.STOP_ON_FIRST_FAILURE):
        self.client = client
        self.project_id = project_id
        self.observer = observer or SyncObserver()
        self.executor = executor or RateLimitedExecutor(observer=self.observer)
        self.orchestrator = BatchOrchestrator(self.executor, self.observer)
        self.failure_policy = failure_policy

    def _require_client(self) -> PoeditorClient:
        if self.client is None:
            raise TermSyncError("A POEditor client is required for this operation.")
        return self.client

    async def create_sync_plan(self, local_keys: Sequence[LocalKey], include_langs: Sequence[str],
                               delete_extraneous: bool = False) -> SyncPlan:
        """
        Fetch the remote snapshot once and diff it against ``local_keys``.

        Raises:
            TermSyncError: If the remote snapshot cannot be fetched.
        """
        client = self._require_client()
        logger.info("Creating sync plan for project %s...", self.project_id)
        try:
            remote_terms = await client.list_terms(self.project_id)
            logger.info("Found %d remote terms", len(remote_terms))

            entries = []
            for lang in include_langs:
                logger.info("Fetching %s translations...", lang)
                entries.extend(await client.list_translations(self.project_id, lang))
        except ApiError as api_exc:
            raise TermSyncError(f"Failed to create sync plan: {api_exc}") from api_exc

        plan = compute_plan(
            local_keys,
            remote_terms,
            build_translation_map(entries, include_langs),
            DiffOptions(delete_extraneous=delete_extraneous, include_langs=tuple(include_langs)),
        )
        logger.info(
            "Sync plan created: adds=%d updates=%d deletes=%d missing=%d",
            plan.stats.adds, plan.stats.updates, plan.stats.deletes, plan.stats.missing
        )
        return plan

    async def execute_sync(self, plan: SyncPlan, batch_size: int = DEFAULT_BATCH_SIZE,
                           dry_run: bool = False, rate_limit_delay: float = DEFAULT_RATE_LIMIT_DELAY,
                           machine_translate: MachineTranslateDirective = False) -> SyncResult:
        """
        Execute ``plan``.

        Args:
            plan: The plan to apply.
            batch_size: Maximum items per remote call.
            dry_run: Report projected counts without any remote call.
            rate_limit_delay: Minimum spacing between remote calls, in seconds.
            machine_translate: True, or an explicit language list.

        Returns:
            The SyncResult. Remote failures are recorded in ``errors``, never raised.
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        result = SyncResult(audit_log_id=new_audit_id())
        logger.info("%sExecuting sync plan (audit id %s)...", "DRY RUN: " if dry_run else "", result.audit_log_id)

        if dry_run:
            result.created = len(plan.add_terms)
            result.updated = len(plan.update_terms)
            result.deleted = len(plan.delete_terms)
            result.mt_triggered = resolve_mt_languages(plan, machine_translate)
            self.observer.on_complete(result)
            return result

        client = self._require_client()
        min_delay_ms = int(rate_limit_delay * 1000)
        phases = [
            _Phase("add_terms", plan.add_terms,
                   lambda batch: client.add_terms(self.project_id, batch), "added", "created"),
            _Phase("update_terms", plan.update_terms,
                   lambda batch: client.update_terms(self.project_id, batch, plan.term_contexts),
                   "updated", "updated"),
            _Phase("delete_terms", plan.delete_terms,
                   lambda batch: client.delete_terms(self.project_id, batch, plan.term_contexts),
                   "deleted", "deleted"),
        ]

        aborted = False
        for phase in phases:
            if not phase.items:
                continue
            error = await self._run_phase(phase, batch_size, min_delay_ms, result)
            if error is None:
                continue
            self.observer.on_phase_error(phase.name, error)
            if self.failure_policy is FailurePolicy.STOP_ON_FIRST_FAILURE:
                result.errors.append(SyncError(operation="sync", message=error))
                aborted = True
                break
            result.errors.append(SyncError(operation=phase.name, message=error))

        if not aborted:
            result.mt_triggered = resolve_mt_languages(plan, machine_translate)
            if result.mt_triggered:
                # Recorded only: POEditor exposes machine translation per plan tier, not through this API.
                logger.info("Machine translation requested for: %s", ", ".join(result.mt_triggered))

        self.observer.on_complete(result)
        return result

    async def _run_phase(self, phase: _Phase, batch_size: int, min_delay_ms: int,
                         result: SyncResult) -> Optional[str]:
        """Run one phase, fold its counters into ``result`` and return an error message on failure."""
        try:
            batch_results = await self.orchestrator.run(
                phase.items, batch_size, phase.operation, min_delay_ms, phase=phase.name
            )
        except BatchFailedError as batch_exc:
            self._aggregate(phase, batch_exc.completed, result)
            return str(batch_exc)
        except Exception as exc:
            logger.exception("Unexpected error during %s", phase.name)
            return str(exc)
        self._aggregate(phase, batch_results, result)
        return None

    @staticmethod
    def _aggregate(phase: _Phase, batch_results: List[Dict[str, int]], result: SyncResult) -> None:
        added = sum(counters.get(phase.counter, 0) for counters in batch_results)
        setattr(result, phase.result_field, getattr(result, phase.result_field) + added)
        result.rate_limit_waits += len(batch_results)
