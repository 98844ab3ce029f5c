"""
String Table

Deduplicates strings into dense integer indexes. Every table that stores text
(function names, file names, marker names) stores an index into one of these.
"""

from typing import Iterable, Optional


class StringTable:
    """
    Ordered set of unique strings.

    Indexes are handed out in first-seen order and never change; the table
    only grows.
    """

    def __init__(self, strings: Optional[Iterable[str]] = None):
        self._array: list[str] = []
        self._index_for_string: dict[str, int] = {}
        if strings is not None:
            for string in strings:
                self.index_for_string(string)

    def index_for_string(self, string: str) -> int:
        index = self._index_for_string.get(string)
        if index is None:
            index = len(self._array)
            self._array.append(string)
            self._index_for_string[string] = index
        return index

    def get_string(self, index: int, default: Optional[str] = None) -> str:
        """
        Return the string stored at index.

        Raises:
            IndexError: If the index is out of range and no default was given
        """
        if 0 <= index < len(self._array):
            return self._array[index]
        if default is not None:
            return default
        raise IndexError(f"String index {index} is out of range (length {len(self._array)})")

    def has_string(self, string: str) -> bool:
        return string in self._index_for_string

    def copy(self) -> 'StringTable':
        return StringTable(self._array)

    def to_list(self) -> list[str]:
        return list(self._array)

    def __len__(self) -> int:
        return len(self._array)

    def __iter__(self):
        return iter(self._array)

    def __repr__(self) -> str:
        return f"StringTable({len(self._array)} strings)"
