"""
dispatcher.py — MessageDispatcher: single entry point for an inbound message.

Order for one message:
  1. active pending flow (transaction -> edit -> delete) consumes it
  2. supportive mode consumes it
  3. slash commands (/edit, /hapus, /delete, /batal, /curhat, /help)
  4. natural language via the interpreter

Messages from the same user are serialized on a per-user asyncio.Lock; different
users run concurrently. DurableStoreFailure anywhere turns into one generic
apology, and since flows commit before clearing, pending state is left as it was.
"""
import asyncio
import logging
import weakref
from typing import Any, Dict, List, Optional

from kasai.config import Settings, settings as default_settings
from kasai.conversation import messages
from kasai.conversation.collaborators import Interpreter, Ledger, ReplyContent, ReplySink
from kasai.conversation.flows import ConversationStateMachine
from kasai.conversation.parsing import find_category_by_name, parse_transaction_id
from kasai.modes.controller import ModeController
from kasai.sessions.errors import DurableStoreFailure
from kasai.sessions.manager import SessionManager
from kasai.sessions.schemas import TransactionType, UserProfile

logger = logging.getLogger(__name__)


class MessageDispatcher:
    def __init__(
        self,
        manager: SessionManager,
        flows: ConversationStateMachine,
        modes: ModeController,
        interpreter: Interpreter,
        ledger: Ledger,
        config: Settings = default_settings,
    ) -> None:
        self._manager = manager
        self._flows = flows
        self._modes = modes
        self._interpreter = interpreter
        self._ledger = ledger
        self._auto_commit = config.auto_commit_confidence
        self._confirm = config.confirm_confidence
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    async def handle_message(
        self,
        user_id: str,
        text: str,
        sink: ReplySink,
        display_name: Optional[str] = None,
    ) -> None:
        lock = self._lock_for(user_id)
        async with lock:
            try:
                replies = await self._process(user_id, text, display_name)
            except DurableStoreFailure as exc:
                logger.error("Durable store failure user_id=%s operation=%s", user_id, exc.operation)
                replies = [messages.GENERIC_APOLOGY]
            for reply in replies:
                await sink.reply(reply)

    async def _process(self, user_id: str, text: str, display_name: Optional[str]) -> List[ReplyContent]:
        text = text.strip()
        user = await self._manager.ensure_user(user_id, display_name)
        if not text:
            return [messages.HELP]

        flow_replies = await self._flows.handle(user_id, text)
        if flow_replies is not None:
            return list(flow_replies)

        if await self._modes.is_supportive(user_id):
            return await self._modes.handle(user, text)

        if text.startswith("/"):
            return [await self._command(user, text)]

        return [await self._natural_language(user_id, text)]

    async def _command(self, user: UserProfile, text: str) -> str:
        command, _, argument = text.partition(" ")
        command = command.lower()
        if command in ("/help", "/start", "/bantuan"):
            return messages.HELP
        if command == "/curhat":
            return await self._modes.enter_supportive(user)
        if command == "/batal":
            await self._flows.clear_all(user.id)
            return messages.CANCELLED
        if command in ("/edit", "/hapus", "/delete"):
            transaction_id = parse_transaction_id(argument)
            if transaction_id is None:
                return messages.usage(command)
            if command == "/edit":
                return await self._flows.begin_edit(user.id, transaction_id)
            return await self._flows.begin_delete(user.id, transaction_id)
        return messages.unknown_command(command)

    async def _natural_language(self, user_id: str, text: str) -> str:
        context: Dict[str, Any] = {"user_id": user_id, "categories": await self._category_names(user_id)}
        result = await self._interpreter.interpret(text, context)
        if not result.is_transaction or result.confidence < self._confirm:
            return messages.NOT_UNDERSTOOD

        description = (result.description or text).strip()
        if result.confidence >= self._auto_commit:
            categories = await self._ledger.get_categories(user_id, result.type)
            category = find_category_by_name(result.category, categories)
            if category is not None:
                snapshot = await self._ledger.add_transaction(
                    user_id, result.type, result.amount, description, category.id,
                    date=self._manager.local_today(),
                )
                logger.info("Auto-committed transaction user_id=%s transaction_id=%s", user_id, snapshot.id)
                return messages.transaction_saved(snapshot)

        return await self._flows.begin_category_selection(user_id, result.type, result.amount, description)

    async def _category_names(self, user_id: str) -> List[str]:
        names: List[str] = []
        for type in TransactionType:
            categories = await self._ledger.get_categories(user_id, type)
            names.extend(category.name for category in categories)
        return names
