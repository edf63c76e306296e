from unittest.mock import MagicMock, patch

import httpx
import pytest

from termsync.models import PlanStats, RemoteTerm, SyncPlan, TermUpdate
from termsync.progress import TqdmProgressObserver
from termsync.rate_limit import RateLimitedExecutor
from termsync.sync_manager import FailurePolicy, SyncManager


def fake_tqdm_factory(bars):
    def _make(total, desc, **kwargs):
        bar = MagicMock(total=total, n=0)
        bars[desc] = bar
        return bar
    return _make


@pytest.mark.asyncio
async def test_each_successful_phase_bar_completes_even_when_another_fails(
        fake_poeditor, make_client, sleep_recorder):
    fake_poeditor.add_remote_term("upd.0")
    fake_poeditor.add_remote_term("upd.1")
    fake_poeditor.failures = [httpx.Response(401)]
    plan = SyncPlan(
        add_terms=(RemoteTerm(term="new.0"),),
        update_terms=(TermUpdate(term="upd.0", updates={"comment": "c"}),
                      TermUpdate(term="upd.1", updates={"comment": "c"})),
        stats=PlanStats(adds=1, updates=2),
    )
    bars = {}

    with patch("termsync.progress.tqdm", side_effect=fake_tqdm_factory(bars)):
        observer = TqdmProgressObserver()
        executor = RateLimitedExecutor(observer=observer, sleep=sleep_recorder, jitter=lambda: 0)
        async with make_client() as client:
            manager = SyncManager(client, "42", executor=executor, observer=observer,
                                  failure_policy=FailurePolicy.ISOLATE_PHASES)
            result = await manager.execute_sync(plan, batch_size=1, rate_limit_delay=0)

    assert [error.operation for error in result.errors] == ["add_terms"]
    assert bars["add_terms"].n == 0
    assert bars["update_terms"].n == bars["update_terms"].total == 2
    for bar in bars.values():
        bar.close.assert_called_once()


def test_interrupted_phase_bar_is_closed_on_complete():
    bars = {}
    with patch("termsync.progress.tqdm", side_effect=fake_tqdm_factory(bars)):
        observer = TqdmProgressObserver()
        observer.on_phase_start("delete_terms", 30, 3)
        observer.on_batch("delete_terms", 2, 3)
        observer.on_complete(MagicMock(errors=[], created=0, updated=0, deleted=0, audit_log_id="x"))

    assert bars["delete_terms"].n == 1
    bars["delete_terms"].close.assert_called_once()
