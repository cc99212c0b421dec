"""
Utility functions for pullstream

Logging setup, performance measurement of eager drains, and ready-made
page fetchers for ``from_async_paginated_fetch``: an in-memory source for
demos and tests, and an aiohttp-backed HTTP fetcher.
"""

import asyncio
import gc
import logging
import sys
import time
import tracemalloc
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiohttp

from pullstream.models import Page, PerformanceReport


# ---------- Logging Setup ----------

def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """Setup structured logging for pullstream"""
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - [%(funcName)s:%(lineno)d] - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )
    return logging.getLogger('pullstream')


# ---------- Performance Measurement ----------

def measure_performance(operation_name: str, func, *args, **kwargs) -> Tuple[Any, PerformanceReport]:
    """Run ``func`` with timing and memory tracking; re-raises on failure."""
    tracemalloc.start()
    gc.collect()
    start_time = time.perf_counter()

    try:
        result = func(*args, **kwargs)
        execution_time_ms = (time.perf_counter() - start_time) * 1000
        current, peak = tracemalloc.get_traced_memory()

        report = PerformanceReport(
            operation=operation_name,
            success=True,
            execution_time_ms=execution_time_ms,
            memory_usage_mb=peak / 1024 / 1024,
            result_size=len(result) if hasattr(result, "__len__") else None,
        )
        return result, report

    except Exception as e:
        execution_time_ms = (time.perf_counter() - start_time) * 1000
        current, peak = tracemalloc.get_traced_memory()
        logging.getLogger('pullstream.performance').debug(
            f"{operation_name} failed after {execution_time_ms:.2f}ms "
            f"(peak {peak / 1024 / 1024:.2f}MB): {e}"
        )
        raise

    finally:
        tracemalloc.stop()


# ---------- Page Fetchers ----------

class InMemoryPageSource:
    """
    Serves ``items`` in pages of ``page_size``; the token is the offset of
    the next page. Counts fetches and tracks how many run at once.
    """

    def __init__(self, items: Sequence[Any], page_size: int, delay_seconds: float = 0.0):
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        self.items = list(items)
        self.page_size = page_size
        self.delay_seconds = delay_seconds
        self.calls: List[Optional[int]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    @property
    def fetch_count(self) -> int:
        return len(self.calls)

    async def __call__(self, token: Optional[int]) -> Page:
        self.calls.append(token)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            # Always yield to the loop so overlapping fetches would be visible.
            await asyncio.sleep(self.delay_seconds)
            offset = token or 0
            end = offset + self.page_size
            next_token = end if end < len(self.items) else None
            return Page(items=self.items[offset:end], next_token=next_token)
        finally:
            self.in_flight -= 1


def http_page_fetcher(
    session: aiohttp.ClientSession,
    url: str,
    *,
    token_param: str = "token",
    params: Optional[Dict[str, Any]] = None,
    timeout_seconds: float = 30.0,
):
    """
    Build a ``fetch_page(token)`` that GETs ``url`` and expects a JSON body
    of the form ``{"items": [...], "next_token": ...}``. The token is sent
    as the ``token_param`` query parameter on every fetch but the first.
    """
    logger = logging.getLogger('pullstream.http')
    timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def fetch_page(token: Any) -> Page:
        query = dict(params or {})
        if token is not None:
            query[token_param] = str(token)
        logger.debug(f"GET {url} params={query}")
        async with session.get(url, params=query, timeout=timeout) as response:
            response.raise_for_status()
            payload = await response.json()
        return Page.coerce(payload)

    return fetch_page
