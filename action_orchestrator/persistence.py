"""
JSON Document Store

Key-value JSON documents addressed by path. Used for the cookie document, the
user-agent list and the proxy list. A missing file is a normal "nothing to
load" condition and yields the caller's default.
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Callable, Dict, Union

PathLike = Union[str, Path]


class JsonDocumentStore:
    """Reads and writes JSON documents without blocking the event loop"""

    def __init__(self):
        self._locks: Dict[Path, asyncio.Lock] = {}

    async def read(self, path: PathLike, default: Any = None) -> Any:
        file_path = Path(path)
        if not file_path.exists():
            return default

        # Use asyncio.to_thread to run blocking I/O in thread executor
        return await asyncio.to_thread(self._load_json_file, file_path)

    async def write(self, path: PathLike, data: Any) -> None:
        file_path = Path(path)
        await asyncio.to_thread(self._save_json_file, file_path, data)

    async def update(
        self, path: PathLike, default: Any, mutate: Callable[[Any], Any]
    ) -> Any:
        """
        Read-modify-write a document under a per-path lock.

        Args:
            path: Document path
            default: Document used when the file does not exist yet
            mutate: Receives the current document and returns the new one

        Returns:
            The document that was written
        """
        file_path = Path(path)
        async with self._lock_for(file_path):
            document = await self.read(file_path, default)
            updated = mutate(document)
            await self.write(file_path, updated)
            return updated

    def _lock_for(self, file_path: Path) -> asyncio.Lock:
        key = file_path.resolve()
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def _load_json_file(self, file_path: Path) -> Any:
        """Helper method to load JSON data from file (runs in thread executor)"""
        with open(file_path, "r") as f:
            return json.load(f)

    def _save_json_file(self, file_path: Path, data: Any) -> None:
        """Helper method to save JSON data to file (runs in thread executor)"""
        file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(file_path, "w") as f:
            json.dump(data, f, indent=2)
