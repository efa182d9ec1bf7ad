"""
Workspace cache holding intermediate results between sessions.
"""
import pickle
from pathlib import Path
from typing import Any, Dict, Iterator, Optional


class Workspace:
    """
    Named store of in-memory results backed by a single pickle file.

    Stages check ``name in workspace`` before recomputing. That check
    only tests presence: a stale or half-written entry is treated as
    done. The file carries no checksum or schema version, and a file
    that cannot be unpickled raises on :meth:`load`.
    """

    def __init__(self, path: Optional[Path] = None, logger=None):
        self.path = Path(path) if path is not None else None
        self.logger = logger
        self._entries: Dict[str, Any] = {}

    def _log(self, message: str) -> None:
        if self.logger:
            self.logger.info(message)

    def exists(self) -> bool:
        """Whether a cache file is present on disk."""
        return self.path is not None and self.path.exists()

    def load(self) -> bool:
        """
        Load the cache file if present.

        Returns
        -------
        loaded : bool
            False when there is no file to load
        """
        if not self.exists():
            self._log("No workspace cache found, starting fresh")
            return False

        self._log(f"Loading workspace cache from {self.path}")
        with open(self.path, 'rb') as f:
            entries = pickle.load(f)
        if not isinstance(entries, dict):
            raise ValueError(
                f"Workspace cache {self.path} holds {type(entries).__name__}, expected dict"
            )
        self._entries.update(entries)
        self._log(f"  Restored {len(entries)} entries: {sorted(entries)}")
        return True

    def save(self) -> Path:
        """Write every entry to the cache file."""
        if self.path is None:
            raise ValueError("Workspace has no cache path to save to")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'wb') as f:
            pickle.dump(self._entries, f, protocol=pickle.HIGHEST_PROTOCOL)
        self._log(f"Workspace saved to {self.path} ({len(self._entries)} entries)")
        return self.path

    def has(self, name: str) -> bool:
        return name in self._entries

    def get(self, name: str, default: Any = None) -> Any:
        return self._entries.get(name, default)

    def set(self, name: str, value: Any) -> None:
        self._entries[name] = value

    def remove(self, name: str) -> None:
        self._entries.pop(name, None)

    def keys(self):
        return self._entries.keys()

    def __contains__(self, name: str) -> bool:
        return self.has(name)

    def __getitem__(self, name: str) -> Any:
        try:
            return self._entries[name]
        except KeyError:
            raise KeyError(f"Workspace has no entry '{name}'") from None

    def __setitem__(self, name: str, value: Any) -> None:
        self.set(name, value)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
