import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class Participant:
    display_name: str
    watch_hours: float = 0.0

    def label(self) -> str:
        return f"{self.display_name} ({self.watch_hours:.1f}h)"


class PresenceTracker:
    """
    Who is online, in relay order, and how many hours each has watched.

    Snapshots replace the set wholesale, but a participant seen before keeps
    the watch-time we already know for them.
    """

    def __init__(self, identity: str, local_watch_hours: float = 0.0):
        self.identity = identity
        self._local_hours = local_watch_hours
        self._participants: Dict[str, Participant] = {
            identity: Participant(identity, local_watch_hours)
        }

    @property
    def participants(self) -> List[Participant]:
        return list(self._participants.values())

    @property
    def names(self) -> List[str]:
        return list(self._participants)

    @property
    def host(self) -> Optional[str]:
        # the relay lists the longest-connected participant first
        return next(iter(self._participants), None)

    def get(self, name: str) -> Optional[Participant]:
        return self._participants.get(name)

    def apply_snapshot(self, names: Iterable[str]):
        previous = self._participants
        updated: Dict[str, Participant] = {}
        for name in names:
            if name in updated:
                continue
            known = previous.get(name)
            if known is not None:
                updated[name] = known
            elif name == self.identity:
                updated[name] = Participant(name, self._local_hours)
            else:
                updated[name] = Participant(name, 0.0)
        dropped = set(previous) - set(updated)
        if dropped:
            logger.debug("Participants left: %s", ", ".join(sorted(dropped)))
        self._participants = updated

    def apply_watch_hours(self, sender: str, value: float) -> bool:
        if value < 0:
            logger.warning("Ignoring negative watch hours %r from %s", value, sender)
            return False
        participant = self._participants.get(sender)
        if participant is None:
            # presence has not caught up yet; the next snapshot introduces them
            return False
        participant.watch_hours = value
        return True

    def note_local_watch_hours(self, hours: float):
        self._local_hours = hours
        me = self._participants.get(self.identity)
        if me is None:
            self._participants[self.identity] = Participant(self.identity, hours)
        else:
            me.watch_hours = hours
