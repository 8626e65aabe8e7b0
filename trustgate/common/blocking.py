"""
Blocking I/O helper

SQLite and file writes run in the default thread pool so the event loop
keeps accepting submissions while they complete.
"""

import asyncio
from typing import Any, Callable, TypeVar

T = TypeVar("T")


async def run_blocking(func: Callable[..., T], *args: Any) -> T:
    """Run a blocking function in a thread to avoid blocking the event loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, func, *args)
