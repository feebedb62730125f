"""Spam guard - react to a repeating abuse signal once per participant."""


class SpamGuard:
    """Session-scoped set of participants already flagged."""

    def __init__(self):
        self._flagged: set[str] = set()

    def flag_once(self, key: str) -> bool:
        """Flag a participant.

        Returns:
            True the first time since the last clear, False afterwards
        """
        if key in self._flagged:
            return False
        self._flagged.add(key)
        return True

    def is_flagged(self, key: str) -> bool:
        return key in self._flagged

    def clear(self, key: str) -> None:
        self._flagged.discard(key)

    def clear_all(self) -> None:
        self._flagged.clear()

    def __len__(self) -> int:
        return len(self._flagged)
