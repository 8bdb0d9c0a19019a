import pytest

from apps.kyc_worker.metrics import RECOVERED_TOTAL
from apps.kyc_worker.recovery import recover_stuck_documents, requeue_stuck_jobs


def _counter(metric, **labels):
    for sample in metric.collect()[0].samples:
        if sample.name.endswith("_total") and all(sample.labels.get(k) == v for k, v in labels.items()):
            return sample.value
    return 0


async def _strand(queue, *document_ids):
    for document_id in document_ids:
        await queue.enqueue(document_id)
        await queue.dequeue()
        await queue.increment_attempts(document_id)


@pytest.mark.asyncio
async def test_recover_stuck_documents_moves_every_member(queue):
    await _strand(queue, "doc-1", "doc-2", "doc-3")
    before = _counter(RECOVERED_TOTAL, mode="startup")

    recovered = await recover_stuck_documents(queue)

    assert recovered == 3
    assert await queue.processing_members() == []
    assert sorted(await queue.client.lrange(queue.keys.queue, 0, -1)) == ["doc-1", "doc-2", "doc-3"]
    assert _counter(RECOVERED_TOTAL, mode="startup") == before + 3


@pytest.mark.asyncio
async def test_recover_stuck_documents_preserves_attempts(queue):
    await _strand(queue, "doc-1")
    await queue.increment_attempts("doc-1")

    await recover_stuck_documents(queue)

    assert await queue.get_attempts("doc-1") == 2


@pytest.mark.asyncio
async def test_recover_with_empty_processing_set_is_noop(queue, caplog):
    await queue.enqueue("doc-1")

    with caplog.at_level("INFO"):
        assert await recover_stuck_documents(queue) == 0

    assert "No stuck documents found during recovery" in caplog.text
    assert await queue.client.lrange(queue.keys.queue, 0, -1) == ["doc-1"]


@pytest.mark.asyncio
async def test_requeue_stuck_jobs_dry_run_changes_nothing(queue):
    await _strand(queue, "doc-1", "doc-2")

    listed = await requeue_stuck_jobs(queue, dry_run=True)

    assert listed == ["doc-1", "doc-2"]
    assert await queue.processing_members() == ["doc-1", "doc-2"]


@pytest.mark.asyncio
async def test_requeue_stuck_jobs_resets_attempts(queue):
    await _strand(queue, "doc-1", "doc-2")

    requeued = await requeue_stuck_jobs(queue)

    assert requeued == ["doc-1", "doc-2"]
    assert await queue.processing_members() == []
    assert await queue.get_attempts("doc-1") == 0
    assert await queue.get_attempts("doc-2") == 0
