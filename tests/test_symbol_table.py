"""Unit tests for the token symbol table."""

from __future__ import annotations

from pathlib import Path
from tempfile import TemporaryDirectory
import unittest

from lstm_transducer.model.symbol_table import SymbolTable


class SymbolTableTests(unittest.TestCase):
    def test_loads_and_decodes(self) -> None:
        with TemporaryDirectory() as tmp:
            path = Path(tmp) / "tokens.txt"
            path.write_text("<blk> 0\n▁HELLO 1\n▁WOR 2\nLD 3\n", encoding="utf-8")
            table = SymbolTable.from_file(path)

        self.assertEqual(4, len(table))
        self.assertEqual("<blk>", table[0])
        self.assertIn(3, table)
        self.assertNotIn(9, table)
        self.assertEqual(2, table.sym2id["▁WOR"])
        self.assertEqual("HELLO WORLD", table.decode([1, 2, 3]))

    def test_unknown_ids_are_skipped(self) -> None:
        table = SymbolTable({1: "▁a", 2: "b"})
        self.assertEqual("ab", table.decode([1, 42, 2]))

    def test_malformed_line(self) -> None:
        with TemporaryDirectory() as tmp:
            path = Path(tmp) / "tokens.txt"
            path.write_text("a b c\n", encoding="utf-8")
            with self.assertRaises(ValueError):
                SymbolTable.from_file(path)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
