from typing import Protocol


class PlateCachePort(Protocol):
    def is_duplicate(self, plate: str) -> bool:
        ...

    def insert(self, plate: str) -> None:
        ...
