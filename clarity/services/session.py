from __future__ import annotations

import time
import uuid
from dataclasses import dataclass


def new_session_id() -> str:
    return f"{uuid.uuid4().hex}{int(time.time() * 1000)}"


@dataclass
class SessionContext:
    """Correlation token for one multi-turn exchange with the completions backend.

    Created lazily on first use and cleared on reset. Pass a fixed
    ``session_id`` to make the identity deterministic.
    """

    session_id: str = ""

    def ensure(self) -> str:
        if not self.session_id:
            self.session_id = new_session_id()
        return self.session_id

    def reset(self) -> None:
        self.session_id = ""
