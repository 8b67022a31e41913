"""
controller.py — ModeController: financial vs. supportive ("curhat") mode.

Per-user ModeState {mode, voice_preference} lives in the session store under
SessionKind.MODE_STATE with no expiry. Setting either field to its current
value writes nothing.

Entering supportive mode clears pending financial flows and today's history,
then greets. Entering it again while already there changes nothing and only
reminds the user how to leave.

Voice replies need an injected Synthesizer. Without one (the default wiring in
main.py) every reply that would have been spoken is sent as text.
"""
import logging
from typing import List, Optional

from kasai.config import Settings, settings as default_settings
from kasai.conversation.collaborators import (
    AudioReply,
    Interpreter,
    ReplyContent,
    ReplyVariant,
    SynthesisError,
    Synthesizer,
)
from kasai.conversation.flows import ConversationStateMachine
from kasai.conversation.parsing import normalize
from kasai.modes.voice import parse_voice_preference_command, wants_voice
from kasai.sessions.kinds import SessionKind
from kasai.sessions.manager import SessionManager
from kasai.sessions.schemas import ConversationMode, ModeState, UserProfile, VoicePreference

logger = logging.getLogger(__name__)

EXIT_KEYWORDS = frozenset({"/quit", "/keluar", "selesai", "/exit"})
ENTER_COMMAND = "/curhat"

_PREFERENCE_CONFIRMATIONS = {
    VoicePreference.ALWAYS: "🔊 Oke, mulai sekarang aku akan selalu membalas dengan suara.",
    VoicePreference.NEVER: "💬 Oke, aku akan membalas dengan teks saja.",
    VoicePreference.ASK: "👌 Oke, aku akan membalas dengan suara hanya kalau kamu minta.",
}

ALREADY_SUPPORTIVE = (
    "💭 Kamu masih dalam mode curhat, aku masih di sini mendengarkan. "
    "Ketik */quit* atau *selesai* kalau mau keluar."
)
EMPTY_REPLY = "😅 Maaf, aku sedang sedikit bingung. Bisa coba ceritakan lagi?"


def supportive_greeting(bot_name: str, display_name: Optional[str]) -> str:
    greeting = f"Halo {display_name}!" if display_name else "Halo!"
    return (
        "💭 *Mode Curhat Aktif* 🤗\n\n"
        f"{greeting} Aku {bot_name}, siap jadi teman curhat yang mendengarkan tanpa menghakimi.\n\n"
        "🔊 Mau dibalas dengan suara? Bilang saja \"pakai suara\", atau \"selalu pakai suara\".\n"
        "🚪 Untuk keluar, ketik */quit* atau *selesai*.\n\n"
        "Jadi, ada yang ingin kamu ceritakan hari ini? 😊"
    )


def supportive_farewell(display_name: Optional[str]) -> str:
    name = f" {display_name}" if display_name else ""
    return (
        f"👋 Terima kasih sudah berbagi{name}. Mode curhat selesai, riwayat percakapan hari ini sudah dihapus.\n"
        "Kamu kembali ke mode pencatatan keuangan."
    )


class ModeController:
    def __init__(
        self,
        manager: SessionManager,
        flows: ConversationStateMachine,
        interpreter: Interpreter,
        synthesizer: Optional[Synthesizer] = None,
        config: Settings = default_settings,
    ) -> None:
        self._manager = manager
        self._flows = flows
        self._interpreter = interpreter
        self._synthesizer = synthesizer
        self._bot_name = config.bot_name

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    async def get_state(self, user_id: str) -> ModeState:
        raw = await self._manager.get(SessionKind.MODE_STATE, user_id)
        return ModeState.model_validate(raw) if raw is not None else ModeState()

    async def _put_state(self, user_id: str, current: ModeState, updated: ModeState) -> bool:
        if updated == current:
            return False
        await self._manager.save(SessionKind.MODE_STATE, user_id, updated.model_dump(mode="json"))
        logger.info(
            "Mode state user_id=%s mode=%s voice=%s",
            user_id, updated.mode.value, updated.voice_preference.value,
        )
        return True

    async def set_mode(self, user_id: str, mode: ConversationMode) -> bool:
        """Returns True if the stored state changed."""
        current = await self.get_state(user_id)
        return await self._put_state(user_id, current, current.model_copy(update={"mode": mode}))

    async def set_voice_preference(self, user_id: str, preference: VoicePreference) -> bool:
        current = await self.get_state(user_id)
        return await self._put_state(
            user_id, current, current.model_copy(update={"voice_preference": preference})
        )

    async def is_supportive(self, user_id: str) -> bool:
        return (await self.get_state(user_id)).mode is ConversationMode.SUPPORTIVE

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def enter_supportive(self, user: UserProfile) -> str:
        current = await self.get_state(user.id)
        if current.mode is ConversationMode.SUPPORTIVE:
            return ALREADY_SUPPORTIVE
        await self._flows.clear_all(user.id)
        await self._manager.clear_history(user.id)
        await self._put_state(
            user.id, current, current.model_copy(update={"mode": ConversationMode.SUPPORTIVE})
        )
        return supportive_greeting(self._bot_name, user.name)

    async def exit_supportive(self, user: UserProfile) -> str:
        await self._manager.clear_history(user.id)
        await self.set_mode(user.id, ConversationMode.FINANCIAL)
        return supportive_farewell(user.name)

    # ------------------------------------------------------------------
    # Supportive-mode message
    # ------------------------------------------------------------------

    async def handle(self, user: UserProfile, text: str) -> List[ReplyContent]:
        command = normalize(text)
        if command in EXIT_KEYWORDS:
            return [await self.exit_supportive(user)]
        if command == ENTER_COMMAND:
            return [await self.enter_supportive(user)]

        preference = parse_voice_preference_command(text)
        if preference is not None:
            await self.set_voice_preference(user.id, preference)
            return [_PREFERENCE_CONFIRMATIONS[preference]]

        state = await self.get_state(user.id)
        voice = wants_voice(text, state.voice_preference)
        variant = self.reply_variant(voice)

        await self._manager.append_history(user.id, "user", text)
        history = await self._manager.get_history(user.id)
        reply = (await self._interpreter.supportive_reply(history, variant, user.name)).strip()
        if not reply:
            return [EMPTY_REPLY]
        await self._manager.append_history(user.id, "assistant", reply)

        if voice:
            return [await self._render_voice(user.id, reply)]
        return [reply]

    @staticmethod
    def reply_variant(voice: bool) -> ReplyVariant:
        return ReplyVariant.LISTENING if voice else ReplyVariant.READING

    async def _render_voice(self, user_id: str, reply: str) -> ReplyContent:
        if self._synthesizer is None:
            return reply
        try:
            audio = await self._synthesizer.synthesize(reply)
        except SynthesisError as exc:
            logger.warning("Voice synthesis failed user_id=%s, sending text: %s", user_id, exc)
            return reply
        return AudioReply(audio=audio, caption=reply)
