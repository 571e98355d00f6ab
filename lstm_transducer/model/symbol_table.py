from pathlib import Path
from typing import Iterable

SPACE_SYMBOL = "▁"


class SymbolTable:
    def __init__(self, id2sym: dict[int, str]):
        self.id2sym = dict(id2sym)
        self.sym2id = {sym: idx for idx, sym in self.id2sym.items()}

    @classmethod
    def from_file(cls, path: str | Path) -> "SymbolTable":
        id2sym: dict[int, str] = {}
        with Path(path).open("r", encoding="utf-8") as handle:
            for lineno, line in enumerate(handle, start=1):
                fields = line.split()
                if not fields:
                    continue
                if len(fields) == 1:
                    # The space symbol itself is written as " <id>".
                    sym, idx = " ", fields[0]
                elif len(fields) == 2:
                    sym, idx = fields
                else:
                    raise ValueError(f"{path}:{lineno}: malformed line {line!r}")
                id2sym[int(idx)] = sym
        return cls(id2sym)

    def __len__(self) -> int:
        return len(self.id2sym)

    def __getitem__(self, idx: int) -> str:
        return self.id2sym[idx]

    def __contains__(self, idx: int) -> bool:
        return idx in self.id2sym

    def decode(self, token_ids: Iterable[int]) -> str:
        text = "".join(self.id2sym.get(i, "") for i in token_ids)
        return text.replace(SPACE_SYMBOL, " ").strip()
