from datetime import datetime, timezone


class Clock:
    """Wall clock. Services take one so tests can pin the time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def today(self):
        return self.now().date()


class FixedClock(Clock):
    def __init__(self, current: datetime):
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        self.current = current

    def now(self) -> datetime:
        return self.current

    def advance(self, delta):
        self.current = self.current + delta


system_clock = Clock()
