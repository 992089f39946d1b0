"""Conversation storage keyed by ``app_id:user_id:channel``."""

import asyncio
import hashlib
import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import lancedb
from loguru import logger

from chatrelay.providers.base import Message

CLEANUP_INTERVAL = 60 * 60
MAX_CONVERSATION_AGE = 24 * 60 * 60
MAX_MEMORY_BYTES = 50 * 1024 * 1024

MAX_TOTAL_MESSAGES = 150
TARGET_MESSAGES = 100
CHAT_WINDOW_SIZE = 50
VOICE_VIDEO_WINDOW_SIZE = 30
MIN_MESSAGES_TO_KEEP = 20

# Chat and voice/video turns of one user share this conversation channel.
DEFAULT_CHANNEL = "default"


def conversation_key(app_id: str, user_id: str, channel: str) -> str:
    return f"{app_id}:{user_id}:{channel}"


def _content_hash(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


def _estimate_size(conversation: "Conversation") -> int:
    return len(json.dumps([m.to_dict() for m in conversation.messages]))


def _by_time(msg: Message) -> float:
    return msg.timestamp or 0.0


@dataclass
class Conversation:
    app_id: str
    user_id: str
    channel: str
    messages: list[Message] = field(default_factory=list)
    last_updated: float = field(default_factory=time.time)
    system_hash: str | None = None

    @property
    def key(self) -> str:
        return conversation_key(self.app_id, self.user_id, self.channel)

    def history(self) -> list[Message]:
        return list(self.messages)


def smart_trim(conversation: Conversation) -> bool:
    """
    Shrink an oversized conversation while keeping what matters most.

    Keeps the latest system message, the most recent chat-mode and voice/video
    messages, and the tool results answering kept tool calls, then tops up with
    the newest leftovers so at least ``MIN_MESSAGES_TO_KEEP`` remain. Returns
    False when nothing had to be trimmed.
    """
    messages = conversation.messages
    if len(messages) <= TARGET_MESSAGES:
        return False

    logger.info(
        "Trimming conversation {} ({} messages, target {})",
        conversation.key,
        len(messages),
        TARGET_MESSAGES,
    )
    system = [m for m in messages if m.role == "system"]
    chat = [m for m in messages if m.mode == "chat" and m.role != "system"][-CHAT_WINDOW_SIZE:]
    voice_video = [
        m for m in messages if m.mode in ("voice", "video") and m.role != "system"
    ][-VOICE_VIDEO_WINDOW_SIZE:]

    recent = sorted(chat + voice_video, key=_by_time)
    call_ids = {tc.id for m in recent if m.role == "assistant" for tc in m.tool_calls}
    tool_results = [
        m for m in messages if m.role == "tool" and m.tool_call_id in call_ids
    ]

    kept = ([system[-1]] if system else []) + recent + tool_results
    kept.sort(key=_by_time)

    if len(kept) < MIN_MESSAGES_TO_KEEP < len(messages):
        kept_ids = {id(m) for m in kept}
        leftovers = [m for m in messages if id(m) not in kept_ids]
        kept.extend(leftovers[-(MIN_MESSAGES_TO_KEEP - len(kept)):])
        kept.sort(key=_by_time)

    conversation.messages = kept
    logger.debug(
        "Conversation trimmed to {} (chat={}, voice/video={}, tool={})",
        len(kept),
        len(chat),
        len(voice_video),
        len(tool_results),
    )
    return True


class ConversationStore:
    """In-memory conversations with managed system messages and idle cleanup."""

    def __init__(
        self,
        max_age: float = MAX_CONVERSATION_AGE,
        cleanup_interval: float = CLEANUP_INTERVAL,
        max_memory: int = MAX_MEMORY_BYTES,
        clock: Callable[[], float] = time.time,
    ):
        self.max_age = max_age
        self.cleanup_interval = cleanup_interval
        self.max_memory = max_memory
        self._clock = clock
        self._conversations: dict[str, Conversation] = {}
        self._cleanup_task: asyncio.Task | None = None

    def get_or_create(
        self, app_id: str, user_id: str, channel: str = DEFAULT_CHANNEL
    ) -> Conversation:
        key = conversation_key(app_id, user_id, channel)
        conversation = self._conversations.get(key)
        if conversation is None:
            conversation = self._load(app_id, user_id, channel)
            if conversation is None:
                logger.info("Creating new conversation {}", key)
                conversation = Conversation(
                    app_id=app_id, user_id=user_id, channel=channel, last_updated=self._clock()
                )
            self._conversations[key] = conversation
        return conversation

    def append(self, app_id: str, user_id: str, channel: str, message: Message) -> None:
        """Append a message; system messages replace the current one instead."""
        conversation = self.get_or_create(app_id, user_id, channel)
        if message.role == "system":
            self._set_system(conversation, message)
        else:
            if message.timestamp is None:
                message.timestamp = self._clock()
            conversation.messages.append(message)
            if len(conversation.messages) > MAX_TOTAL_MESSAGES:
                smart_trim(conversation)
            logger.debug(
                "Saved {} message [{}] to {} ({} total)",
                message.role,
                message.mode or "-",
                conversation.key,
                len(conversation.messages),
            )
        conversation.last_updated = self._clock()
        self._save(conversation)

    def _set_system(self, conversation: Conversation, message: Message) -> None:
        digest = _content_hash(message.content)
        if digest == conversation.system_hash:
            logger.trace("System message unchanged for {}", conversation.key)
            return
        conversation.messages = [m for m in conversation.messages if m.role != "system"]
        if message.timestamp is None:
            message.timestamp = self._clock()
        conversation.messages.insert(0, message)
        conversation.system_hash = digest
        logger.debug("Updated system message for {}", conversation.key)

    def conversations_for_channel(self, app_id: str, channel: str) -> list[Conversation]:
        return [
            c for c in self._conversations.values() if c.app_id == app_id and c.channel == channel
        ]

    def channels_for_app(self, app_id: str) -> list[str]:
        return sorted({c.channel for c in self._conversations.values() if c.app_id == app_id})

    def cleanup(self, max_age: float | None = None) -> tuple[int, int]:
        """
        Drop idle conversations and trim large ones; returns (removed, trimmed).

        When the estimated size of what is left still exceeds ``max_memory``,
        the largest conversations are evicted until usage is back under 80%
        of the limit.
        """
        max_age = self.max_age if max_age is None else max_age
        now = self._clock()
        removed = trimmed = 0
        for key, conversation in list(self._conversations.items()):
            if now - conversation.last_updated > max_age:
                logger.debug(
                    "Removing idle conversation {} ({} min)",
                    key,
                    round((now - conversation.last_updated) / 60),
                )
                del self._conversations[key]
                removed += 1
            elif smart_trim(conversation):
                self._save(conversation)
                trimmed += 1
        removed += self._relieve_memory_pressure()
        if removed or trimmed:
            logger.info("Conversation cleanup: removed={}, trimmed={}", removed, trimmed)
        return removed, trimmed

    def _relieve_memory_pressure(self) -> int:
        sizes = {key: _estimate_size(c) for key, c in self._conversations.items()}
        total = sum(sizes.values())
        logger.debug(
            "Conversation memory: {:.2f}MB in {} conversations",
            total / 1024 / 1024,
            len(sizes),
        )
        if total <= self.max_memory:
            return 0

        logger.warning(
            "Conversation memory pressure: {:.2f}MB over {:.2f}MB limit",
            total / 1024 / 1024,
            self.max_memory / 1024 / 1024,
        )
        to_free = total - self.max_memory * 0.8
        freed = removed = 0
        for key, size in sorted(sizes.items(), key=lambda kv: kv[1], reverse=True):
            if freed >= to_free:
                break
            logger.debug("Evicting large conversation {} ({:.1f}KB)", key, size / 1024)
            del self._conversations[key]
            freed += size
            removed += 1
        return removed

    def stats(self) -> dict[str, Any]:
        now = self._clock()
        by_mode = {"chat": 0, "voice": 0, "video": 0, "unspecified": 0}
        by_channel: dict[str, int] = {}
        total = 0
        oldest = 0.0
        for c in self._conversations.values():
            total += len(c.messages)
            by_channel[c.channel] = by_channel.get(c.channel, 0) + 1
            oldest = max(oldest, now - c.last_updated)
            for m in c.messages:
                by_mode[m.mode or "unspecified"] += 1
        count = len(self._conversations)
        return {
            "total_conversations": count,
            "total_messages": total,
            "oldest_conversation_age_hours": oldest / 3600,
            "average_messages_per_conversation": total / count if count else 0,
            "messages_by_mode": by_mode,
            "conversations_by_channel": by_channel,
        }

    def clear(self) -> None:
        self._conversations.clear()
        logger.info("Cleared all conversations")

    def __len__(self) -> int:
        return len(self._conversations)

    def __contains__(self, key: object) -> bool:
        return key in self._conversations

    def start(self) -> None:
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._run_cleanup())

    async def stop(self) -> None:
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

    async def _run_cleanup(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            try:
                self.cleanup()
            except Exception as e:
                logger.error("Error during conversation cleanup: {}", e)

    # Persistence hooks, no-ops for the in-memory store.

    def _load(self, app_id: str, user_id: str, channel: str) -> Conversation | None:
        return None

    def _save(self, conversation: Conversation) -> None:
        pass


_META_SAMPLE = [
    {
        "conversation_key": "_init_",
        "app_id": "",
        "user_id": "",
        "channel": "",
        "last_updated": 0.0,
        "system_hash": "",
    }
]
_MSG_SAMPLE = [
    {
        "conversation_key": "_init_",
        "idx": 0,
        "role": "system",
        "content": "",
        "mode": "",
        "timestamp": 0.0,
        "extra_json": "{}",
    }
]

_connections: dict[str, lancedb.DBConnection] = {}


def get_db(workspace: Path) -> lancedb.DBConnection:
    key = str(workspace)
    if key not in _connections:
        db_path = workspace / "lancedb"
        db_path.mkdir(parents=True, exist_ok=True)
        _connections[key] = lancedb.connect(str(db_path))
    return _connections[key]


def ensure_table(db: lancedb.DBConnection, name: str, sample: list[dict]) -> lancedb.table.Table:
    try:
        return db.open_table(name)
    except Exception:
        return db.create_table(name, data=sample)


def _escape(val: str) -> str:
    return val.replace("'", "''")


class LanceConversationStore(ConversationStore):
    """Conversation store that writes through to LanceDB tables under ``workspace``."""

    def __init__(self, workspace: Path, **kwargs: Any):
        super().__init__(**kwargs)
        self.workspace = workspace
        self._db = get_db(workspace)
        self._meta_tbl = ensure_table(self._db, "conversation_meta", _META_SAMPLE)
        self._msg_tbl = ensure_table(self._db, "conversation_messages", _MSG_SAMPLE)

    def _load(self, app_id: str, user_id: str, channel: str) -> Conversation | None:
        key = conversation_key(app_id, user_id, channel)
        safe = _escape(key)
        try:
            meta_rows = (
                self._meta_tbl.search().where(f"conversation_key = '{safe}'").limit(1).to_list()
            )
            if not meta_rows:
                return None
            meta = meta_rows[0]
            msg_rows = (
                self._msg_tbl.search()
                .where(f"conversation_key = '{safe}'")
                .limit(MAX_TOTAL_MESSAGES + 1)
                .to_list()
            )
        except Exception as e:
            logger.warning("Failed to load conversation {}: {}", key, e)
            return None

        msg_rows.sort(key=lambda r: r["idx"])
        messages = []
        for r in msg_rows:
            data: dict[str, Any] = {
                "role": r["role"],
                "content": r["content"],
                "mode": r.get("mode") or None,
                "timestamp": r.get("timestamp") or None,
            }
            data.update(json.loads(r.get("extra_json") or "{}"))
            messages.append(Message.from_dict(data))

        logger.debug("Loaded conversation {} ({} messages)", key, len(messages))
        return Conversation(
            app_id=app_id,
            user_id=user_id,
            channel=channel,
            messages=messages,
            last_updated=meta.get("last_updated") or self._clock(),
            system_hash=meta.get("system_hash") or None,
        )

    def _save(self, conversation: Conversation) -> None:
        safe = _escape(conversation.key)
        self._meta_tbl.delete(f"conversation_key = '{safe}'")
        self._msg_tbl.delete(f"conversation_key = '{safe}'")

        self._meta_tbl.add(
            [
                {
                    "conversation_key": conversation.key,
                    "app_id": conversation.app_id,
                    "user_id": conversation.user_id,
                    "channel": conversation.channel,
                    "last_updated": conversation.last_updated,
                    "system_hash": conversation.system_hash or "",
                }
            ]
        )
        if conversation.messages:
            rows = []
            for i, msg in enumerate(conversation.messages):
                data = msg.to_dict()
                extra = {
                    k: v for k, v in data.items() if k not in ("role", "content", "mode", "timestamp")
                }
                rows.append(
                    {
                        "conversation_key": conversation.key,
                        "idx": i,
                        "role": msg.role,
                        "content": msg.content,
                        "mode": msg.mode or "",
                        "timestamp": msg.timestamp or 0.0,
                        "extra_json": json.dumps(extra) if extra else "{}",
                    }
                )
            self._msg_tbl.add(rows)

