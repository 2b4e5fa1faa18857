"""Run the file parser off the event loop in a single-process pool.

The worker executes the same parse_file function; it only moves the work.
"""

import asyncio
import logging
from concurrent.futures import Executor, ProcessPoolExecutor

from logscope.models import ParseResult
from logscope.parsers import parse_file

logger = logging.getLogger(__name__)


class ParseWorker:
    def __init__(self, executor: Executor | None = None):
        self._executor = executor
        self._owns_executor = executor is None

    def __enter__(self) -> "ParseWorker":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _get_executor(self) -> Executor:
        if self._executor is None:
            self._executor = ProcessPoolExecutor(max_workers=1)
        return self._executor

    async def parse(self, content: str, filename: str) -> ParseResult:
        """Parse in the pool. Failures come back as ParseResult.error."""
        loop = asyncio.get_running_loop()
        try:
            records = await loop.run_in_executor(
                self._get_executor(), parse_file, content, filename,
            )
        except Exception as e:
            logger.error("Parsing %s in worker failed: %s", filename, e)
            return ParseResult(records=[], error=str(e) or "Unknown parsing error")
        return ParseResult(records=records)

    def close(self) -> None:
        if self._owns_executor and self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
