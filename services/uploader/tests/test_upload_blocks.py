import asyncio

import pytest

from services.uploader.application.retry import RetryPolicy
from services.uploader.application.use_cases import BlockUploader, CommitCoordinator
from services.uploader.domain.blocks import BlockState, FileUpload, block_id_for
from services.uploader.domain.errors import (
    MediaFileError,
    TransportError,
    UnexpectedStatus,
)

DESTINATION = "https://acct.blob.core.windows.net/media/p/video.webm?sig=secret"


class RecordingStore:
    """In-memory block store; later blocks finish first unless told otherwise."""

    def __init__(
        self,
        *,
        fail_index: int | None = None,
        transient_failures: int = 0,
        delay=None,
    ) -> None:
        self.staged: dict[str, bytes] = {}
        self.completion_order: list[str] = []
        self.attempts: list[str] = []
        self.manifests = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._fail_index = fail_index
        self._transient_failures = transient_failures
        self._delay = delay or (lambda index: 0.01 * (10 - index))

    async def put_block(self, *, destination_url, block_id, data):
        self.attempts.append(block_id)
        index = [block_id_for(i) for i in range(50)].index(block_id)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self._transient_failures:
                self._transient_failures -= 1
                raise TransportError("connection reset")
            if index == self._fail_index:
                raise UnexpectedStatus("Put block returned HTTP 500", status_code=500)
            await asyncio.sleep(self._delay(index))
            self.staged[block_id] = data
            self.completion_order.append(block_id)
        finally:
            self.in_flight -= 1

    async def commit_block_list(self, *, destination_url, manifest):
        self.manifests.append(manifest)


def _upload(tmp_path, size=10, chunk_size=3) -> FileUpload:
    media = tmp_path / "video.webm"
    media.write_bytes(bytes(range(size)))
    return FileUpload.plan(
        label="video",
        file_path=media,
        destination_url=DESTINATION,
        chunk_size=chunk_size,
    )


def _uploader(store, *, max_retries=1, max_concurrency=None) -> BlockUploader:
    return BlockUploader(
        store=store,
        retry_policy=RetryPolicy(max_retries=max_retries, backoff_seconds=0),
        max_concurrency=max_concurrency,
    )


@pytest.mark.asyncio
async def test_every_block_is_staged_with_its_byte_range(tmp_path):
    store = RecordingStore()
    upload = _upload(tmp_path)

    await _uploader(store).upload_all(upload)

    assert upload.all_committed
    assert store.staged[block_id_for(0)] == bytes([0, 1, 2])
    assert store.staged[block_id_for(3)] == bytes([9])
    assert b"".join(store.staged[block_id_for(i)] for i in range(4)) == bytes(range(10))


@pytest.mark.asyncio
async def test_commit_lists_blocks_by_index_despite_reverse_completion(tmp_path):
    store = RecordingStore()
    upload = _upload(tmp_path)

    await _uploader(store).upload_all(upload)
    committed = await CommitCoordinator(
        store=store, retry_policy=RetryPolicy(max_retries=1, backoff_seconds=0)
    ).commit(upload)

    expected = [block_id_for(i) for i in range(4)]
    assert store.completion_order == list(reversed(expected))
    assert list(store.manifests[0].block_ids) == expected
    assert committed.url == DESTINATION.split("?")[0]
    assert committed.block_count == 4
    assert committed.size == 10


@pytest.mark.asyncio
async def test_concurrency_cap_is_respected(tmp_path):
    store = RecordingStore()
    upload = _upload(tmp_path, size=20, chunk_size=2)

    await _uploader(store, max_concurrency=2).upload_all(upload)

    assert upload.all_committed
    assert store.max_in_flight <= 2


@pytest.mark.asyncio
async def test_unbounded_runs_all_blocks_at_once(tmp_path):
    store = RecordingStore(delay=lambda index: 0.1)
    upload = _upload(tmp_path, size=8, chunk_size=2)

    await _uploader(store, max_concurrency=0).upload_all(upload)

    assert store.max_in_flight == 4


@pytest.mark.asyncio
async def test_first_failure_stops_the_file(tmp_path):
    store = RecordingStore(fail_index=3, delay=lambda index: 0.5)
    upload = _upload(tmp_path)

    with pytest.raises(UnexpectedStatus):
        await _uploader(store).upload_all(upload)

    assert upload.count(BlockState.COMMITTED) == 0
    assert upload.blocks[3].state is BlockState.FAILED
    assert not upload.all_committed


@pytest.mark.asyncio
async def test_failed_file_cannot_be_committed(tmp_path):
    store = RecordingStore(fail_index=0)
    upload = _upload(tmp_path)
    with pytest.raises(UnexpectedStatus):
        await _uploader(store).upload_all(upload)

    with pytest.raises(ValueError):
        await CommitCoordinator(
            store=store, retry_policy=RetryPolicy(max_retries=1)
        ).commit(upload)

    assert store.manifests == []


@pytest.mark.asyncio
async def test_transient_failure_retries_with_same_block_id(tmp_path):
    store = RecordingStore(transient_failures=1)
    upload = _upload(tmp_path, size=3, chunk_size=3)

    await _uploader(store, max_retries=2).upload_all(upload)

    assert store.attempts == [block_id_for(0), block_id_for(0)]
    assert upload.all_committed


@pytest.mark.asyncio
async def test_retries_exhausted_surface_transport_error(tmp_path):
    store = RecordingStore(transient_failures=10)
    upload = _upload(tmp_path, size=3, chunk_size=3)

    with pytest.raises(TransportError):
        await _uploader(store, max_retries=2).upload_all(upload)

    assert len(store.attempts) == 3


@pytest.mark.asyncio
async def test_file_shrinking_after_planning_is_media_error(tmp_path):
    store = RecordingStore()
    upload = _upload(tmp_path)
    upload.file_path.write_bytes(b"short")

    with pytest.raises(MediaFileError):
        await _uploader(store).upload_all(upload)
