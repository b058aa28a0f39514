from __future__ import annotations
from pathlib import Path
from typing import Callable, Optional, TypeVar, Union

T = TypeVar("T")


class MocasaError(Exception):
    """Base error for anything a user can act on: bad config, bad data, crashed workers."""

    kind = "Error"

    def __init__(self, message: str, path: Optional[Union[str, Path]] = None, name: Optional[str] = None):
        self.message = message
        self.path = None if path is None else str(path)
        self.name = name
        super().__init__(str(self))

    def __str__(self) -> str:
        text = self.message
        if self.name is not None:
            text = f"{text} (parameter {self.name})"
        if self.path is not None:
            text = f"{self.path}: {text}"
        return text


class ConfigError(MocasaError):
    kind = "Config error"


class DataError(MocasaError):
    kind = "Data error"


class ParamsError(MocasaError):
    kind = "Params error"


class WorkerError(MocasaError):
    kind = "Worker error"


class NumericalError(MocasaError):
    kind = "Numerical error"


def for_file(path: Union[str, Path], fn: Callable[[], T]) -> T:
    """Run fn, turning an OSError into a MocasaError that names the file."""
    try:
        return fn()
    except OSError as exc:
        raise MocasaError(exc.strerror or str(exc), path=path) from exc
