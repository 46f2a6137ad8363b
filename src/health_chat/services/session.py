"""Chat session controller.

Drives one user's conversation through a small state machine::

    Idle -> Loading -> Ready -> Sending -> Ready
                                   \\-> Error -> Ready (after the notice is acknowledged)

On every submit the user message is appended and persisted before the
gateway is called; the reply is appended and persisted after it returns.
Only one gateway call is outstanding at a time; a submit while a call is in
flight is ignored, not queued.
"""

import asyncio
import contextlib
from abc import ABC, abstractmethod
from enum import Enum
from typing import AsyncIterator, List, Optional

import structlog

from ..config import Settings, get_settings
from ..domain.errors import GatewayError, StoreError, ValidationError
from ..domain.models import ConversationLog, Message, Sender, UserContext
from ..repositories.conversation import ConversationStore
from ..repositories.sqlite import SQLiteKeyValueStore
from .auth import AuthStateStream, AuthSubscription, SessionContext
from .documents import DocumentStore, load_user_context
from .gateway import InferenceGateway
from .notices import DEFAULT_LOCALE, notice
from .relay_client import RelayClient

logger = structlog.get_logger()


class SessionState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    SENDING = "sending"
    ERROR = "error"


class Presenter(ABC):
    """Presentation-layer callbacks used by the controller."""

    @abstractmethod
    async def alert(self, message: str) -> None:
        """Show a notice; return once the user has acknowledged it."""
        pass

    @abstractmethod
    async def confirm(self, title: str, prompt: str) -> bool:
        """Ask a yes/no question."""
        pass


class LoggingPresenter(Presenter):
    """Headless presenter: notices go to the log, confirmations use a fixed answer."""

    def __init__(self, auto_confirm: bool = False) -> None:
        self.auto_confirm = auto_confirm
        self.notices: List[str] = []

    async def alert(self, message: str) -> None:
        self.notices.append(message)
        logger.warning("user_notice", message=message)

    async def confirm(self, title: str, prompt: str) -> bool:
        logger.info("user_confirmation", title=title, answer=self.auto_confirm)
        return self.auto_confirm


class ChatSessionController:
    """Keeps the in-memory log and the persisted log in step for one user."""

    def __init__(
        self,
        store: ConversationStore,
        gateway: InferenceGateway,
        documents: Optional[DocumentStore] = None,
        presenter: Optional[Presenter] = None,
        locale: str = DEFAULT_LOCALE,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.documents = documents
        self.presenter = presenter or LoggingPresenter()
        self.locale = locale
        self.session: Optional[SessionContext] = None
        self.last_notice: Optional[str] = None
        self._log: Optional[ConversationLog] = None
        self._state = SessionState.IDLE
        self._changed = asyncio.Event()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def log(self) -> Optional[ConversationLog]:
        return self._log

    @property
    def messages(self) -> List[Message]:
        return list(self._log.messages) if self._log is not None else []

    @property
    def input_enabled(self) -> bool:
        return self._state is SessionState.READY

    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        logger.debug("session_state_changed", old=self._state.value, new=state.value)
        self._state = state
        self._changed.set()
        self._changed = asyncio.Event()

    async def wait_for_state(self, state: SessionState) -> None:
        while self._state is not state:
            await self._changed.wait()

    async def _notify(self, key: str) -> None:
        self.last_notice = notice(key, self.locale)
        await self.presenter.alert(self.last_notice)

    async def start(self, session: SessionContext) -> None:
        """Load the persisted log of ``session``'s user and become Ready."""
        self.session = session
        self._log = None
        self._set_state(SessionState.LOADING)
        self._log = await self.store.load(session.user_id)
        self._set_state(SessionState.READY)
        logger.info("chat_session_started", user_id=session.user_id, message_count=len(self._log))

    def reset(self) -> None:
        """Drop the session and its in-memory log. The persisted log is kept."""
        if self.session is not None:
            logger.info("chat_session_ended", user_id=self.session.user_id)
        self.session = None
        self._log = None
        self._set_state(SessionState.IDLE)

    async def _persist(self, user_id: str, log: ConversationLog) -> bool:
        try:
            await self.store.save(user_id, log)
            return True
        except StoreError as e:
            logger.error("conversation_persist_failed", user_id=user_id, error=str(e))
            await self._notify(e.notice)
            return False

    def _owns_session(self, user_id: str) -> bool:
        return self.session is not None and self.session.user_id == user_id

    async def _user_context(self, user_id: str) -> Optional[UserContext]:
        if self.documents is None:
            return None
        return await load_user_context(self.documents, user_id)

    async def submit(self, text: str) -> Optional[Message]:
        """Run one turn. Returns the assistant message, or None if there is none."""
        if self._state is not SessionState.READY or self._log is None or self.session is None:
            logger.info("submit_ignored", state=self._state.value)
            return None
        if not text or not text.strip():
            logger.info("submit_rejected", reason="empty")
            await self._notify(ValidationError.notice)
            return None

        user_id = self.session.user_id
        self._log = self._log.append(Message.create(Sender.USER, text))
        self._set_state(SessionState.SENDING)
        try:
            await self._persist(user_id, self._log)
            try:
                context = await self._user_context(user_id)
                reply = await self.gateway.chat(self._log.messages, context)
            except GatewayError as e:
                logger.error("chat_turn_failed", user_id=user_id, error=str(e))
                if not self._owns_session(user_id):
                    return None
                self._set_state(SessionState.ERROR)
                await self._notify(GatewayError.notice)
                return None

            if not self._owns_session(user_id):
                logger.warning("chat_reply_discarded", user_id=user_id, reason="session_changed")
                return None
            if not reply:
                logger.warning("chat_reply_empty", user_id=user_id)
                return None

            assistant_message = Message.create(Sender.ASSISTANT, reply)
            self._log = self._log.append(assistant_message)
            await self._persist(user_id, self._log)
            logger.info("chat_turn_completed", user_id=user_id, message_count=len(self._log))
            return assistant_message
        finally:
            if self._state in (SessionState.SENDING, SessionState.ERROR) and self._owns_session(user_id):
                self._set_state(SessionState.READY)

    async def delete_history(self) -> bool:
        """Clear the persisted and in-memory log after the user confirms."""
        if self._state is not SessionState.READY or self.session is None:
            return False
        confirmed = await self.presenter.confirm(
            notice("delete_title", self.locale), notice("delete_prompt", self.locale)
        )
        if not confirmed:
            return False

        user_id = self.session.user_id
        try:
            await self.store.clear(user_id)
        except StoreError as e:
            logger.error("conversation_clear_failed", user_id=user_id, error=str(e))
            await self._notify("delete_failed")
            return False
        self._log = ConversationLog(user_id=user_id)
        return True

    async def _follow(self, subscription: AuthSubscription) -> None:
        while True:
            session = await subscription.next_event()
            if session is None:
                self.reset()
            elif session != self.session:
                await self.start(session)

    @contextlib.asynccontextmanager
    async def bind(self, auth_stream: AuthStateStream) -> AsyncIterator["ChatSessionController"]:
        """Follow sign-in/sign-out events for the duration of the block."""
        subscription = auth_stream.subscribe()
        follower = asyncio.create_task(self._follow(subscription))
        try:
            yield self
        finally:
            follower.cancel()
            try:
                await follower
            except asyncio.CancelledError:
                pass
            subscription.close()
            self.reset()


def create_session_controller(
    settings: Optional[Settings] = None,
    documents: Optional[DocumentStore] = None,
    presenter: Optional[Presenter] = None,
) -> ChatSessionController:
    """Wire a controller to the on-device SQLite store and the HTTP relay."""
    settings = settings or get_settings()
    store = ConversationStore(SQLiteKeyValueStore(settings.chat_db_path))
    gateway = RelayClient(settings.relay_url)
    return ChatSessionController(
        store, gateway, documents=documents, presenter=presenter, locale=settings.chat_locale
    )
