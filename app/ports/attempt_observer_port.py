from typing import Protocol
from app.domain.models import AttemptEvent


class AttemptObserver(Protocol):
    def on_attempt(self, event: AttemptEvent) -> None:
        ...
