"""会话管理。

按 session_key（channel:chat_id）维护进程内的 AgentSession 实例。
历史只保存在内存中，进程重启后会话从空白开始。
"""

import threading
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

from loguru import logger

if TYPE_CHECKING:
    from nene.agent.session import AgentSession

SessionFactory = Callable[[str], "AgentSession"]


class SessionManager:
    """类说明：SessionManager。"""

    def __init__(self, factory: SessionFactory):
        self._factory = factory
        self._sessions: dict[str, "AgentSession"] = {}
        self._created: dict[str, datetime] = {}
        self._lock = threading.Lock()

    def get_or_create(self, key: str) -> "AgentSession":
        """原子地获取或创建会话，同一 key 只会创建一次。"""
        with self._lock:
            session = self._sessions.get(key)
            if session is None:
                session = self._factory(key)
                self._sessions[key] = session
                self._created[key] = datetime.now()
                logger.debug(f"Created session {key}")
            return session

    def get(self, key: str) -> "AgentSession | None":
        """函数说明：get。"""
        with self._lock:
            return self._sessions.get(key)

    async def clear(self, key: str) -> bool:
        """清空会话历史，会话不存在时返回 False。"""
        session = self.get(key)
        if session is None:
            return False
        async with session.turn_lock:
            await session.clear()
        return True

    def delete(self, key: str) -> bool:
        """函数说明：delete。"""
        with self._lock:
            self._created.pop(key, None)
            return self._sessions.pop(key, None) is not None

    def list_sessions(self) -> list[dict[str, Any]]:
        """按创建时间倒序列出会话概要。"""
        with self._lock:
            items = [
                {
                    "key": key,
                    "created_at": self._created[key].isoformat(),
                    "messages": len(session.messages),
                    "state": session.state.value,
                }
                for key, session in self._sessions.items()
            ]
        return sorted(items, key=lambda x: x["created_at"], reverse=True)

    def __len__(self) -> int:
        return len(self._sessions)
