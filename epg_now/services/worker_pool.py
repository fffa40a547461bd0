"""
Worker Pool for parallel programme normalization

Splits the programme list into contiguous chunks and runs the chunk
processor on each in its own process. Chunks travel to workers and results
travel back by pickling only; no memory is shared.
"""
import asyncio
import logging
import math
import os
from collections.abc import Callable, Sequence
from concurrent.futures import Executor, ProcessPoolExecutor
from dataclasses import dataclass, field
from time import perf_counter

from epg_now.services.chunk_processor import process_chunk
from epg_now.services.errors import WorkerPoolError
from epg_now.services.fetch_types import ProgramPayload, RawProgramme


logger = logging.getLogger(__name__)

ChunkProcessor = Callable[[Sequence[RawProgramme]], list[ProgramPayload]]
ExecutorFactory = Callable[[int], Executor]


def default_worker_count() -> int:
    """Leave one CPU for the coordinating event loop."""
    return max(1, (os.cpu_count() or 1) - 1)


def partition_programmes(items: Sequence[RawProgramme], worker_count: int) -> list[list[RawProgramme]]:
    """
    Slice items into at most worker_count contiguous chunks.

    Chunk size is ceil(total / worker_count); the last chunk may be smaller.
    """
    total = len(items)
    if total == 0:
        return []

    chunk_size = math.ceil(total / max(1, worker_count))
    return [list(items[start:start + chunk_size]) for start in range(0, total, chunk_size)]


@dataclass(slots=True)
class PoolResult:
    programs: list[ProgramPayload] = field(default_factory=list)
    chunk_count: int = 0
    failed_chunks: list[int] = field(default_factory=list)


def _process_pool_factory(max_workers: int) -> Executor:
    return ProcessPoolExecutor(max_workers=max_workers)


class NormalizationPool:
    """Runs the chunk processor over a programme list in parallel tasks."""

    def __init__(
        self,
        max_workers: int | None = None,
        *,
        allow_partial_results: bool = False,
        processor: ChunkProcessor = process_chunk,
        executor_factory: ExecutorFactory = _process_pool_factory,
    ) -> None:
        self.worker_count = max_workers or default_worker_count()
        self.allow_partial_results = allow_partial_results
        self._processor = processor
        self._executor_factory = executor_factory
        self._active_executor: Executor | None = None

    async def run(self, programmes: Sequence[RawProgramme]) -> PoolResult:
        """
        Normalize programmes across worker tasks and join the results.

        Results are concatenated in chunk submission order.

        Raises:
            WorkerPoolError: If any chunk fails and partial results are not allowed
        """
        chunks = partition_programmes(programmes, self.worker_count)
        if not chunks:
            return PoolResult()

        logger.info(
            f"Normalizing {len(programmes)} programmes in {len(chunks)} chunk(s) "
            f"across {self.worker_count} worker(s)"
        )
        started = perf_counter()

        loop = asyncio.get_running_loop()
        executor = self._executor_factory(len(chunks))
        self._active_executor = executor
        try:
            tasks = [
                loop.run_in_executor(executor, self._processor, chunk)
                for chunk in chunks
            ]
            outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            self._active_executor = None
            executor.shutdown(wait=False, cancel_futures=True)

        result = PoolResult(chunk_count=len(chunks))
        for index, outcome in enumerate(outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Worker chunk {index + 1}/{len(chunks)} failed: {outcome}", exc_info=outcome)
                result.failed_chunks.append(index)
                continue

            logger.debug(f"Worker chunk {index + 1}/{len(chunks)} produced {len(outcome)} programmes")
            result.programs.extend(outcome)

        if result.failed_chunks and not self.allow_partial_results:
            raise WorkerPoolError(
                f"{len(result.failed_chunks)} of {len(chunks)} worker chunk(s) failed",
                failed_chunks=result.failed_chunks,
            )

        if result.failed_chunks:
            logger.warning(
                f"Keeping partial results: {len(result.failed_chunks)} chunk(s) dropped, "
                f"{len(result.programs)} programmes kept"
            )

        logger.info(f"Normalization complete: {len(result.programs)} programmes in {perf_counter() - started:.2f}s")
        return result

    def shutdown(self) -> None:
        """Tear down the executor of an in-flight run, if any."""
        executor = self._active_executor
        if executor is not None:
            logger.info("Terminating outstanding normalization workers")
            executor.shutdown(wait=False, cancel_futures=True)
            self._active_executor = None
