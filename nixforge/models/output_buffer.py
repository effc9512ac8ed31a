"""Bounded scrollback for a workflow screen."""

from collections import deque
from typing import Deque, Iterable, Iterator, List, Optional

from ..config.constants import OUTPUT_BUFFER_SIZE


class OutputBuffer:
    """FIFO of display lines; the oldest line is evicted past capacity.

    A Running screen owns the live buffer. On completion the Complete
    screen receives `snapshot()`, never the live object.

    `total` counts every line ever appended, evicted ones included, so a
    renderer can tell how many lines are new since it last looked.
    """

    def __init__(self, lines: Optional[Iterable[str]] = None, capacity: int = OUTPUT_BUFFER_SIZE):
        self.capacity = capacity
        self._lines: Deque[str] = deque(maxlen=capacity)
        self.total = 0
        if lines is not None:
            self.extend(lines)

    def append(self, line: str) -> None:
        self._lines.append(line)
        self.total += 1

    def extend(self, lines: Iterable[str]) -> None:
        for line in lines:
            self.append(line)

    def since(self, seen: int) -> List[str]:
        """Lines appended after the first `seen`, as far as still retained."""
        new = self.total - seen
        if new <= 0:
            return []
        return list(self._lines)[-new:]

    def snapshot(self) -> "OutputBuffer":
        copy = OutputBuffer(capacity=self.capacity)
        copy._lines.extend(self._lines)
        copy.total = self.total
        return copy

    def lines(self) -> List[str]:
        return list(self._lines)

    def __len__(self) -> int:
        return len(self._lines)

    def __iter__(self) -> Iterator[str]:
        return iter(self._lines)

    def __getitem__(self, index: int) -> str:
        return self._lines[index]
