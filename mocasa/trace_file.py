from __future__ import annotations
from pathlib import Path
from typing import Sequence, Union

from mocasa.errors import for_file
from mocasa.params import ParamIndex, Params


class ParamTraceFileWriter:
    """Tab-separated trace of adopted parameters, one line per round."""

    def __init__(self, path: Union[str, Path], n_endos: int, trait_names: Sequence[str]) -> None:
        self.path = Path(path)
        self.index = 0
        names = [index.with_trait_name(trait_names) for index in ParamIndex.all(n_endos, len(trait_names))]
        header = "\t".join(["index"] + names) + "\n"
        for_file(self.path, lambda: self.path.write_text(header))

    def write(self, params: Params) -> None:
        self.index += 1
        line = "\t".join([str(self.index)] + [repr(float(x)) for x in params.to_vec()]) + "\n"

        def _append() -> None:
            with open(self.path, "a") as fh:
                fh.write(line)

        for_file(self.path, _append)
