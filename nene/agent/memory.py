"""长期记忆存储。

基于 aiosqlite 的键值式记忆库：按 key 做 upsert，
检索优先走 FTS5 全文索引（bm25 排序），无命中或 FTS 不可用时退回 LIKE 关键字匹配。
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

import aiosqlite
from loguru import logger

from nene.utils.helpers import ensure_dir

_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS memories (
    id          TEXT PRIMARY KEY,
    key         TEXT NOT NULL UNIQUE,
    content     TEXT NOT NULL,
    category    TEXT NOT NULL DEFAULT 'core',
    session_id  TEXT,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_memories_category ON memories(category);
CREATE INDEX IF NOT EXISTS idx_memories_session ON memories(session_id);
"""

_FTS_SQL = """
CREATE VIRTUAL TABLE IF NOT EXISTS memories_fts USING fts5(
    key, content, content=memories, content_rowid=rowid
);
CREATE TRIGGER IF NOT EXISTS memories_ai AFTER INSERT ON memories BEGIN
    INSERT INTO memories_fts(rowid, key, content) VALUES (new.rowid, new.key, new.content);
END;
CREATE TRIGGER IF NOT EXISTS memories_ad AFTER DELETE ON memories BEGIN
    INSERT INTO memories_fts(memories_fts, rowid, key, content)
    VALUES ('delete', old.rowid, old.key, old.content);
END;
CREATE TRIGGER IF NOT EXISTS memories_au AFTER UPDATE ON memories BEGIN
    INSERT INTO memories_fts(memories_fts, rowid, key, content)
    VALUES ('delete', old.rowid, old.key, old.content);
    INSERT INTO memories_fts(rowid, key, content) VALUES (new.rowid, new.key, new.content);
END;
"""

_COLUMNS = "id, key, content, category, session_id, created_at, updated_at"
_M_COLUMNS = "m.id, m.key, m.content, m.category, m.session_id, m.created_at, m.updated_at"


class MemoryCategory(str, Enum):
    """记忆分类：core 永久、daily 临时、conversation 会话内。"""

    CORE = "core"
    DAILY = "daily"
    CONVERSATION = "conversation"


def parse_category(value: str | None) -> MemoryCategory:
    """未知或空值一律回退为 core。"""
    try:
        return MemoryCategory(value)
    except ValueError:
        return MemoryCategory.CORE


@dataclass
class MemoryEntry:
    """一条记忆记录。"""

    key: str
    content: str
    category: MemoryCategory = MemoryCategory.CORE
    session_id: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_row(cls, row: aiosqlite.Row) -> "MemoryEntry":
        return cls(
            id=row["id"],
            key=row["key"],
            content=row["content"],
            category=parse_category(row["category"]),
            session_id=row["session_id"] or None,
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )


def build_fts_query(query: str) -> str:
    """把查询词逐个加引号并用 OR 连接，避免 FTS 语法字符被解释。"""
    words = [w.replace('"', '""') for w in query.split()]
    return " OR ".join(f'"{w}"' for w in words)


class MemoryStore:
    """SQLite 记忆库；连接在首次使用时建立，close() 后可再次打开。"""

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self._conn: aiosqlite.Connection | None = None
        self._fts_enabled = False
        self._connect_lock = asyncio.Lock()

    async def _connection(self) -> aiosqlite.Connection:
        if self._conn is not None:
            return self._conn
        async with self._connect_lock:
            if self._conn is None:
                self._conn = await self._open()
            return self._conn

    async def _open(self) -> aiosqlite.Connection:
        ensure_dir(self.db_path.parent)
        conn = await aiosqlite.connect(self.db_path)
        conn.row_factory = aiosqlite.Row
        await conn.execute("PRAGMA journal_mode = WAL")
        await conn.executescript(_TABLE_SQL)
        try:
            await conn.executescript(_FTS_SQL)
            self._fts_enabled = True
        except aiosqlite.OperationalError as e:
            # 部分 SQLite 编译版本不带 FTS5，此时只用 LIKE 检索
            logger.warning(f"FTS5 unavailable, falling back to keyword search: {e}")
            self._fts_enabled = False
        await conn.commit()
        logger.debug(f"Memory store opened at {self.db_path}")
        return conn

    async def store(
        self,
        key: str,
        content: str,
        category: MemoryCategory | str = MemoryCategory.CORE,
        session_id: str | None = None,
    ) -> MemoryEntry:
        """写入或覆盖同 key 的记忆。"""
        entry = MemoryEntry(key=key, content=content, category=parse_category(category), session_id=session_id)
        conn = await self._connection()
        await conn.execute(
            f"""
            INSERT INTO memories ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                content = excluded.content,
                category = excluded.category,
                session_id = excluded.session_id,
                updated_at = excluded.updated_at
            """,
            (
                entry.id,
                entry.key,
                entry.content,
                entry.category.value,
                entry.session_id,
                entry.created_at.isoformat(),
                entry.updated_at.isoformat(),
            ),
        )
        await conn.commit()
        logger.debug(f"Stored memory {key} ({entry.category.value})")
        # upsert 时保留原 id 与 created_at，以库中记录为准
        return await self.get(key) or entry

    async def recall(self, query: str, limit: int = 5, session_id: str | None = None) -> list[MemoryEntry]:
        """按相关度检索记忆。"""
        query = query.strip()
        if not query:
            return []
        if limit <= 0:
            limit = 5

        conn = await self._connection()
        entries: list[MemoryEntry] = []
        if self._fts_enabled:
            sql = f"""
                SELECT {_M_COLUMNS}
                FROM memories m JOIN memories_fts f ON m.rowid = f.rowid
                WHERE memories_fts MATCH ?
            """
            params: list = [build_fts_query(query)]
            if session_id:
                sql += " AND m.session_id = ?"
                params.append(session_id)
            sql += " ORDER BY bm25(memories_fts) LIMIT ?"
            params.append(limit)
            try:
                async with conn.execute(sql, params) as cursor:
                    entries = [MemoryEntry.from_row(row) for row in await cursor.fetchall()]
            except aiosqlite.OperationalError as e:
                logger.warning(f"FTS recall failed, using keyword search: {e}")

        if not entries:
            entries = await self._recall_keywords(conn, query, limit, session_id)
        return entries

    async def _recall_keywords(
        self,
        conn: aiosqlite.Connection,
        query: str,
        limit: int,
        session_id: str | None,
    ) -> list[MemoryEntry]:
        keywords = query.split()
        conditions = " OR ".join("(content LIKE ? OR key LIKE ?)" for _ in keywords)
        params: list = []
        for kw in keywords:
            params.extend([f"%{kw}%", f"%{kw}%"])

        sql = f"SELECT {_COLUMNS} FROM memories WHERE ({conditions})"
        if session_id:
            sql += " AND session_id = ?"
            params.append(session_id)
        sql += " ORDER BY updated_at DESC LIMIT ?"
        params.append(limit)

        async with conn.execute(sql, params) as cursor:
            return [MemoryEntry.from_row(row) for row in await cursor.fetchall()]

    async def get(self, key: str) -> MemoryEntry | None:
        """函数说明：get。"""
        conn = await self._connection()
        async with conn.execute(f"SELECT {_COLUMNS} FROM memories WHERE key = ?", (key,)) as cursor:
            row = await cursor.fetchone()
        return MemoryEntry.from_row(row) if row else None

    async def list(
        self,
        category: MemoryCategory | str | None = None,
        session_id: str | None = None,
        limit: int = 100,
    ) -> list[MemoryEntry]:
        """按更新时间倒序列出记忆，可按分类/会话过滤。"""
        if limit <= 0:
            limit = 100
        clauses, params = [], []
        if category:
            clauses.append("category = ?")
            params.append(parse_category(category).value)
        if session_id:
            clauses.append("session_id = ?")
            params.append(session_id)

        sql = f"SELECT {_COLUMNS} FROM memories"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY updated_at DESC LIMIT ?"
        params.append(limit)

        conn = await self._connection()
        async with conn.execute(sql, params) as cursor:
            return [MemoryEntry.from_row(row) for row in await cursor.fetchall()]

    async def forget(self, key: str) -> bool:
        """删除记忆，返回是否确实删除了记录。"""
        conn = await self._connection()
        cursor = await conn.execute("DELETE FROM memories WHERE key = ?", (key,))
        await conn.commit()
        return cursor.rowcount > 0

    async def count(self) -> int:
        """函数说明：count。"""
        conn = await self._connection()
        async with conn.execute("SELECT COUNT(*) FROM memories") as cursor:
            row = await cursor.fetchone()
        return row[0]

    async def close(self) -> None:
        """函数说明：close。"""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
