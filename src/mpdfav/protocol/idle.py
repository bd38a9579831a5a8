"""One-shot idle subscriptions and their dispatch."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field


@dataclass
class IdleSubscription:
    """A one-shot registration for subsystem change notifications.

    An empty ``subsystems`` set matches any subsystem. The subscription is
    closed (its future resolved and ``active`` cleared) on the first
    matching notification.
    """

    future: asyncio.Future[str]
    subsystems: frozenset[str] = field(default_factory=frozenset)
    active: bool = True

    def wants(self, subsystem: str) -> bool:
        return not self.subsystems or subsystem in self.subsystems

    def deliver(self, subsystem: str) -> None:
        if not self.future.done():
            self.future.set_result(subsystem)
        self.active = False

    def fail(self, exc: BaseException) -> None:
        if not self.future.done():
            self.future.set_exception(exc)
        self.active = False

    def cancel(self) -> None:
        self.future.cancel()
        self.active = False


def dispatch(subscriptions: list[IdleSubscription], subsystem: str) -> list[IdleSubscription]:
    """Deliver ``subsystem`` to every interested subscription.

    Returns the subscriptions still active afterwards. Subscriptions whose
    waiter gave up (cancelled future) are dropped too.
    """
    remaining = []
    for subscription in subscriptions:
        if subscription.future.done():
            subscription.active = False
        if not subscription.active:
            continue
        if subscription.wants(subsystem):
            subscription.deliver(subsystem)
        else:
            remaining.append(subscription)
    return remaining
