"""Actor identity and explicit execution on behalf of an identity."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import structlog
from structlog.contextvars import bound_contextvars

log = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class ActorIdentity:
    user: str
    host: str | None = None
    client_address: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {"user": self.user, "host": self.host, "clientAddress": self.client_address}


async def run_as(identity: ActorIdentity, work: Callable[[ActorIdentity], Awaitable[T]]) -> T:
    """Run ``work`` on behalf of ``identity``.

    The identity is passed to ``work`` explicitly and bound into the log
    context for the duration of the call. Failures propagate unchanged.
    """
    with bound_contextvars(acting_user=identity.user):
        log.debug("identity.run_as", user=identity.user)
        return await work(identity)
