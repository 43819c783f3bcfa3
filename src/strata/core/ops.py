"""Operation construction: id, client, sequence and timestamp assignment."""

import threading
import time
import uuid
from collections.abc import Callable

from strata.models.operation import Operation, Payload


def new_id() -> str:
    return uuid.uuid4().hex


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


class OpFactory:
    """Stamp payloads into operations for one writer.

    Sequence numbers are strictly increasing and handed out under a lock,
    so concurrent callers in one process never share a seq.
    """

    def __init__(
        self,
        *,
        client_id: str | None = None,
        now_ms: Callable[[], int] | None = None,
        start_seq: int = 0,
    ) -> None:
        self.client_id = client_id or new_id()
        self._now_ms = now_ms or wall_clock_ms
        self._seq = start_seq
        self._lock = threading.Lock()

    @property
    def seq(self) -> int:
        """The last seq handed out."""
        return self._seq

    def reset(self, seq: int) -> None:
        with self._lock:
            self._seq = seq

    def make(self, payload: Payload) -> Operation:
        with self._lock:
            self._seq += 1
            seq = self._seq
        return Operation(
            op_id=new_id(),
            client_id=self.client_id,
            seq=seq,
            ts=self._now_ms(),
            payload=payload,
        )

    def now(self) -> int:
        """Current wall-clock time in ms, from the factory's clock."""
        return self._now_ms()
