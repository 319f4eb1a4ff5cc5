"""Durable record of the highest block height whose metadata has been emitted."""

import json
import os
from pathlib import Path
from typing import Optional, Union

# Height of a cursor that has committed nothing yet
UNSET = -1


class CursorError(Exception):
    pass


class ProgressCursor:
    """
    Single-writer progress marker, owned by the consumer.

    The height only ever moves forward. When a path is given every advance is
    written atomically before it returns, so a restart resumes at the last
    acknowledged height.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None, height: int = UNSET):
        self.path = Path(path) if path is not None else None
        self._height = height

    @property
    def height(self) -> int:
        return self._height

    @classmethod
    def load(cls, path: Union[str, Path]) -> "ProgressCursor":
        path = Path(path)
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except FileNotFoundError:
            return cls(path)
        except (OSError, ValueError) as e:
            raise CursorError(f"Error reading cursor from {path}: {e}") from e

        height = data.get("height") if isinstance(data, dict) else None
        if isinstance(height, bool) or not isinstance(height, int) or height < UNSET:
            raise CursorError(f"Cursor file {path} holds no valid height")
        return cls(path, height)

    def advance(self, height: int) -> None:
        if height <= self._height:
            raise CursorError(
                f"Cursor cannot move from {self._height} to {height}"
            )
        if self.path is not None:
            self._write(height)
        self._height = height

    def _write(self, height: int) -> None:
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            with open(tmp, "w") as f:
                json.dump({"height": height}, f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except OSError as e:
            raise CursorError(f"Error writing cursor to {self.path}: {e}") from e

    def __repr__(self) -> str:
        return f"ProgressCursor(height={self._height}, path={self.path})"
