import logging

from session import CallSession

logger = logging.getLogger("ivr.registry")


class CallRegistry:
    """Active calls keyed by call sid (stream sid when the call sid is unknown)."""

    def __init__(self):
        self._calls: dict[str, CallSession] = {}

    def register(self, session: CallSession) -> None:
        key = session.key
        if key in self._calls and self._calls[key] is not session:
            logger.warning("[CALL] Replacing registered session for %s", key)
        self._calls[key] = session

    def unregister(self, session: CallSession) -> None:
        if self._calls.get(session.key) is session:
            del self._calls[session.key]

    def __contains__(self, key: str) -> bool:
        return key in self._calls

    def __len__(self) -> int:
        return len(self._calls)
