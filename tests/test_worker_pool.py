"""
Tests for the parallel normalization pool.
"""
import asyncio
from concurrent.futures import ThreadPoolExecutor

import pytest

from epg_now.services.chunk_processor import process_chunk
from epg_now.services.errors import WorkerPoolError
from epg_now.services.fetch_types import RawProgramme, TextField
from epg_now.services.worker_pool import NormalizationPool, default_worker_count, partition_programmes


def make_records(count, bad_every=None):
    records = []
    for index in range(count):
        hour = index % 24
        start = f"20240115{hour:02d}0000 +0000"
        if bad_every and index % bad_every == 0:
            start = "not-a-date"
        records.append(
            RawProgramme(
                channel=f"ch{index % 3}",
                start=start,
                stop=f"20240115{hour:02d}3000 +0000",
                title=TextField(text=f"Program {index}"),
            )
        )
    return records


def failing_processor(records):
    if any(record.channel == "boom" for record in records):
        raise RuntimeError("chunk exploded")
    return process_chunk(records)


def as_set(programs):
    return {(p.channel_id, p.title, p.start_time, p.stop_time) for p in programs}


class TestPartition:

    def test_chunk_sizes(self):
        chunks = partition_programmes(list(range(10)), 3)
        assert [len(chunk) for chunk in chunks] == [4, 4, 2]
        assert [item for chunk in chunks for item in chunk] == list(range(10))

    def test_fewer_items_than_workers(self):
        chunks = partition_programmes(list(range(2)), 4)
        assert chunks == [[0], [1]]

    def test_single_worker(self):
        assert partition_programmes(list(range(5)), 1) == [list(range(5))]

    def test_empty(self):
        assert partition_programmes([], 4) == []

    def test_default_worker_count_is_at_least_one(self):
        assert default_worker_count() >= 1


class TestNormalizationPool:

    def test_output_matches_sequential_processing(self):
        records = make_records(50, bad_every=7)
        pool = NormalizationPool(4, executor_factory=ThreadPoolExecutor)

        result = asyncio.run(pool.run(records))

        expected = process_chunk(records)
        dropped = sum(1 for index in range(50) if index % 7 == 0)
        assert len(result.programs) == 50 - dropped
        assert as_set(result.programs) == as_set(expected)
        assert result.chunk_count == 4
        assert result.failed_chunks == []

    def test_chunk_order_is_preserved(self):
        records = make_records(12)
        pool = NormalizationPool(3, executor_factory=ThreadPoolExecutor)

        result = asyncio.run(pool.run(records))

        assert [p.title for p in result.programs] == [f"Program {i}" for i in range(12)]

    def test_empty_input(self):
        pool = NormalizationPool(2, executor_factory=ThreadPoolExecutor)
        result = asyncio.run(pool.run([]))
        assert result.programs == []
        assert result.chunk_count == 0

    def test_failed_chunk_voids_join(self):
        records = make_records(9)
        records[8].channel = "boom"
        pool = NormalizationPool(3, processor=failing_processor, executor_factory=ThreadPoolExecutor)

        with pytest.raises(WorkerPoolError) as excinfo:
            asyncio.run(pool.run(records))

        assert excinfo.value.failed_chunks == [2]

    def test_partial_results_keep_successful_chunks(self):
        records = make_records(9)
        records[0].channel = "boom"
        pool = NormalizationPool(
            3,
            allow_partial_results=True,
            processor=failing_processor,
            executor_factory=ThreadPoolExecutor,
        )

        result = asyncio.run(pool.run(records))

        assert result.failed_chunks == [0]
        assert [p.title for p in result.programs] == [f"Program {i}" for i in range(3, 9)]

    def test_runs_in_worker_processes(self):
        records = make_records(20)
        pool = NormalizationPool(2)

        result = asyncio.run(pool.run(records))

        assert as_set(result.programs) == as_set(process_chunk(records))

    def test_shutdown_without_active_run(self):
        pool = NormalizationPool(2, executor_factory=ThreadPoolExecutor)
        pool.shutdown()
