"""Auth-state events: who is signed in, published to explicit subscribers."""

import asyncio
from dataclasses import dataclass
from typing import List, Optional

import structlog

logger = structlog.get_logger()


@dataclass(frozen=True)
class SessionContext:
    """Identity of the signed-in user, passed explicitly to the session."""

    user_id: str


class AuthSubscription:
    """One subscriber's queue of auth events. ``None`` means signed out."""

    def __init__(self, stream: "AuthStateStream") -> None:
        self._stream = stream
        self.queue: "asyncio.Queue[Optional[SessionContext]]" = asyncio.Queue()
        self.closed = False

    async def next_event(self) -> Optional[SessionContext]:
        return await self.queue.get()

    def close(self) -> None:
        if not self.closed:
            self._stream._unsubscribe(self)
            self.closed = True

    def __enter__(self) -> "AuthSubscription":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class AuthStateStream:
    """Publishes sign-in and sign-out events to subscribers.

    New subscribers immediately receive the current state.
    """

    def __init__(self, current: Optional[SessionContext] = None) -> None:
        self.current = current
        self._subscribers: List[AuthSubscription] = []

    def subscribe(self) -> AuthSubscription:
        subscription = AuthSubscription(self)
        self._subscribers.append(subscription)
        subscription.queue.put_nowait(self.current)
        logger.debug("auth_subscribed", subscribers=len(self._subscribers))
        return subscription

    def _unsubscribe(self, subscription: AuthSubscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)
            logger.debug("auth_unsubscribed", subscribers=len(self._subscribers))

    def publish(self, session: Optional[SessionContext]) -> None:
        self.current = session
        logger.info("auth_state_changed", signed_in=session is not None)
        for subscription in list(self._subscribers):
            subscription.queue.put_nowait(session)

    def sign_in(self, user_id: str) -> None:
        self.publish(SessionContext(user_id=user_id))

    def sign_out(self) -> None:
        self.publish(None)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
