"""Workspace folders for captures without an explicit destination."""

from __future__ import annotations

import asyncio
from datetime import datetime
from pathlib import Path

from tether_mcp.observability import get_logger

logger = get_logger(__name__)

__all__ = ["DatedWorkspaceFactory"]


class DatedWorkspaceFactory:
    """Creates ``<root>/session_YYYYMMDD_HHMMSS`` folders.

    A second folder within the same second gets a ``_2``, ``_3``... suffix.
    Usable as a capture coordinator workspace provider.
    """

    def __init__(self, root: Path | str, prefix: str = "session") -> None:
        self.root = Path(root)
        self.prefix = prefix

    def create(self, now: datetime | None = None) -> Path:
        """Create a new workspace folder.

        Raises:
            OSError: The folder could not be created.
        """
        stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
        base = self.root / f"{self.prefix}_{stamp}"
        folder = base
        counter = 2
        while folder.exists():
            folder = base.with_name(f"{base.name}_{counter}")
            counter += 1
        folder.mkdir(parents=True)
        logger.info("Workspace created", folder=str(folder))
        return folder

    async def __call__(self) -> Path:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.create)
