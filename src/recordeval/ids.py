"""Session id generation.

Ids have the form ``{prefix}-{epoch_millis}-{random}``, e.g.
``outlive-session-1718000000000-k3j9x0q2m``.  The random part comes from
``secrets`` so ids are not guessable from the timestamp alone.

The generator is a plain callable so tests can inject a deterministic one.
"""

import secrets
import string
import time
from typing import Callable

IdGenerator = Callable[[str], str]

_ALPHABET = string.ascii_lowercase + string.digits
_SUFFIX_LENGTH = 9


def generate_id(prefix: str) -> str:
    """Return a collision-resistant id carrying ``prefix``."""
    millis = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(_SUFFIX_LENGTH))
    return f"{prefix}-{millis}-{suffix}"


class SequentialIdGenerator:
    """Deterministic ``{prefix}-{n}`` ids for tests and simulations."""

    def __init__(self, start: int = 1) -> None:
        self._next = start

    def __call__(self, prefix: str) -> str:
        value = f"{prefix}-{self._next}"
        self._next += 1
        return value
