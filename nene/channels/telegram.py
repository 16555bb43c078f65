"""Telegram 渠道。

基于 python-telegram-bot 的长轮询实现。流式模式下，TelegramChannel 同时作为
StreamConsumer 的渲染器：同一条消息被原地编辑以展示生成进度，
结束时替换为最终回答，并附带“查看详情”按钮浏览工具调用记录。
"""

import asyncio
import json
import re
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any

from loguru import logger
from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.constants import ChatAction, ParseMode
from telegram.error import TelegramError
from telegram.ext import Application, CallbackQueryHandler, CommandHandler, ContextTypes, MessageHandler, filters

from nene.bus.events import OutboundMessage
from nene.bus.queue import MessageBus
from nene.channels.base import BaseChannel
from nene.config.schema import TelegramConfig
from nene.stream.state import StreamState

MAX_MESSAGE_LENGTH = 4000
TRUNCATED_SUFFIX = "\n\n<i>[Message truncated]</i>"
COMPLETED_TEXT = "✅ Completed"
DETAILS_CALLBACK = "view_details"
BACK_CALLBACK = "back_to_main"
# 只保留最近这么多条消息的工具详情，更早的按钮点击后不再响应
MAX_TOOL_DETAILS = 200


def _escape_html(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def _markdown_to_telegram_html(text: str) -> str:
    """把常见 Markdown 转成 Telegram 支持的 HTML 子集。"""
    if not text:
        return ""

    # 代码块与行内代码先替换为占位符，避免内部内容被后续规则改写
    code_blocks: list[str] = []
    def save_code_block(m: re.Match) -> str:
        code_blocks.append(m.group(1))
        return f"\x00CB{len(code_blocks) - 1}\x00"

    text = re.sub(r'```[\w]*\n?([\s\S]*?)```', save_code_block, text)

    inline_codes: list[str] = []
    def save_inline_code(m: re.Match) -> str:
        inline_codes.append(m.group(1))
        return f"\x00IC{len(inline_codes) - 1}\x00"

    text = re.sub(r'`([^`]+)`', save_inline_code, text)

    # Telegram 不支持标题和引用，只保留文字
    text = re.sub(r'^#{1,6}\s+(.+)$', r'\1', text, flags=re.MULTILINE)
    text = re.sub(r'^>\s*(.*)$', r'\1', text, flags=re.MULTILINE)

    text = _escape_html(text)

    text = re.sub(r'\[([^\]]+)\]\(([^)]+)\)', r'<a href="\2">\1</a>', text)
    text = re.sub(r'\*\*(.+?)\*\*', r'<b>\1</b>', text)
    text = re.sub(r'__(.+?)__', r'<b>\1</b>', text)
    text = re.sub(r'(?<![a-zA-Z0-9])_([^_]+)_(?![a-zA-Z0-9])', r'<i>\1</i>', text)
    text = re.sub(r'~~(.+?)~~', r'<s>\1</s>', text)
    text = re.sub(r'^[-*]\s+', '• ', text, flags=re.MULTILINE)

    for i, code in enumerate(inline_codes):
        text = text.replace(f"\x00IC{i}\x00", f"<code>{_escape_html(code)}</code>")
    for i, code in enumerate(code_blocks):
        text = text.replace(f"\x00CB{i}\x00", f"<pre><code>{_escape_html(code)}</code></pre>")

    return text


def _truncate_html(text: str) -> str:
    if len(text) > MAX_MESSAGE_LENGTH:
        return text[:MAX_MESSAGE_LENGTH] + TRUNCATED_SUFFIX
    return text


@dataclass
class _ToolDetails:
    """最终消息上挂载的工具调用记录。"""

    original: str
    tools: list[dict[str, Any]] = field(default_factory=list)


class TelegramChannel(BaseChannel):
    """Telegram 渠道，同时实现流式渲染接口。"""

    name = "telegram"
    max_tool_details = MAX_TOOL_DETAILS

    def __init__(self, config: TelegramConfig, bus: MessageBus):
        super().__init__(config, bus)
        self.config: TelegramConfig = config
        self._app: Application | None = None
        # 每个 chat 正在被编辑的流式消息 id 与其最近一次的内容
        self._stream_messages: dict[str, int] = {}
        self._last_rendered: dict[str, str] = {}
        self._tool_details: OrderedDict[str, _ToolDetails] = OrderedDict()

    @property
    def bot(self):
        return self._app.bot if self._app else None

    async def start(self) -> None:
        """异步函数说明：start。"""
        if not self.config.token:
            logger.error("Telegram bot token not configured")
            return

        self._running = True

        builder = Application.builder().token(self.config.token)
        if self.config.proxy:
            builder = builder.proxy(self.config.proxy).get_updates_proxy(self.config.proxy)
        self._app = builder.build()

        self._app.add_handler(CommandHandler("start", self._on_start))
        self._app.add_handler(MessageHandler(
            (filters.TEXT | filters.CAPTION) & ~filters.COMMAND,
            self._on_message,
        ))
        self._app.add_handler(CallbackQueryHandler(self._on_callback))

        logger.info("Starting Telegram bot (polling mode)...")

        await self._app.initialize()
        await self._app.start()

        bot_info = await self._app.bot.get_me()
        logger.info(f"Telegram bot @{bot_info.username} connected")

        await self._app.updater.start_polling(
            allowed_updates=["message", "callback_query"],
            drop_pending_updates=True  # 启动时忽略历史消息
        )

        while self._running:
            await asyncio.sleep(1)

    async def stop(self) -> None:
        """异步函数说明：stop。"""
        self._running = False

        if self._app:
            logger.info("Stopping Telegram bot...")
            await self._app.updater.stop()
            await self._app.stop()
            await self._app.shutdown()
            self._app = None

    # ------------------------------------------------------------------
    # 普通消息
    # ------------------------------------------------------------------

    async def send(self, msg: OutboundMessage) -> None:
        """发送 HTML 消息，解析失败时回退为纯文本。"""
        if not self.bot:
            logger.warning("Telegram bot not running")
            return
        if not msg.content:
            return

        try:
            chat_id = int(msg.chat_id)
        except ValueError:
            logger.error(f"Invalid chat_id: {msg.chat_id}")
            return

        await self._send_html(chat_id, _truncate_html(_markdown_to_telegram_html(msg.content)), msg.content)

    async def _send_html(
        self,
        chat_id: int,
        html: str,
        plain: str,
        reply_markup: InlineKeyboardMarkup | None = None,
    ) -> int | None:
        """发送消息并返回 message_id；两次都失败时返回 None。"""
        try:
            sent = await self.bot.send_message(
                chat_id=chat_id, text=html, parse_mode=ParseMode.HTML, reply_markup=reply_markup,
            )
            return sent.message_id
        except TelegramError as e:
            logger.warning(f"HTML parse failed, falling back to plain text: {e}")
        try:
            sent = await self.bot.send_message(chat_id=chat_id, text=plain[:MAX_MESSAGE_LENGTH])
            return sent.message_id
        except TelegramError as e:
            logger.error(f"Error sending Telegram message: {e}")
            return None

    # ------------------------------------------------------------------
    # 流式渲染（StreamRenderer）
    # ------------------------------------------------------------------

    async def render(self, chat_id: str, state: StreamState, final: bool) -> None:
        """把聚合状态渲染到该 chat 的进度消息上。"""
        if not self.bot:
            return
        if final:
            await self._finalize(chat_id, state)
            return

        content = state.render_snapshot()
        if not content:
            return
        html = _truncate_html(_markdown_to_telegram_html(content))
        if html == self._last_rendered.get(chat_id):
            return
        await self._update_stream_message(chat_id, html, content)

    async def render_error(self, chat_id: str, message: str) -> None:
        """发送错误提示并结束该 chat 的进度消息。"""
        self._stream_messages.pop(chat_id, None)
        self._last_rendered.pop(chat_id, None)
        if not self.bot:
            return
        text = f"❌ Error: {message}"
        await self._send_html(int(chat_id), _markdown_to_telegram_html(text), text)

    async def _update_stream_message(self, chat_id: str, html: str, plain: str) -> None:
        """优先原地编辑；编辑失败时删除旧消息并重新发送。"""
        message_id = self._stream_messages.get(chat_id)
        if message_id is not None:
            try:
                await self.bot.edit_message_text(
                    text=html, chat_id=int(chat_id), message_id=message_id, parse_mode=ParseMode.HTML,
                )
                self._last_rendered[chat_id] = html
                return
            except TelegramError as e:
                logger.debug(f"Edit failed for {chat_id}, resending: {e}")
        await self._resend_stream_message(chat_id, html, plain)

    async def _resend_stream_message(self, chat_id: str, html: str, plain: str) -> None:
        old_id = self._stream_messages.pop(chat_id, None)
        if old_id is not None:
            try:
                await self.bot.delete_message(chat_id=int(chat_id), message_id=old_id)
            except TelegramError as e:
                logger.debug(f"Failed to delete stale stream message: {e}")

        new_id = await self._send_html(int(chat_id), html, plain)
        if new_id is not None:
            self._stream_messages[chat_id] = new_id
            self._last_rendered[chat_id] = html

    async def _finalize(self, chat_id: str, state: StreamState) -> None:
        """用最终回答替换进度消息；有工具调用时附带详情按钮。"""
        message_id = self._stream_messages.pop(chat_id, None)
        self._last_rendered.pop(chat_id, None)
        final_text = state.final_text()
        tools = state.tool_summaries()

        if message_id is None:
            if final_text:
                await self._send_html(int(chat_id), _truncate_html(_markdown_to_telegram_html(final_text)), final_text)
            return

        final_html = _truncate_html(_markdown_to_telegram_html(final_text)) or COMPLETED_TEXT
        markup = None
        if tools:
            markup = InlineKeyboardMarkup([[
                InlineKeyboardButton("📋 View Details", callback_data=f"{DETAILS_CALLBACK}:0"),
            ]])

        try:
            await self.bot.edit_message_text(
                text=final_html,
                chat_id=int(chat_id),
                message_id=message_id,
                parse_mode=ParseMode.HTML,
                reply_markup=markup,
            )
        except TelegramError as e:
            logger.warning(f"Failed to finalize stream message for {chat_id}: {e}")
            message_id = await self._send_html(int(chat_id), final_html, final_text or COMPLETED_TEXT, markup)
            if message_id is None:
                return

        if tools:
            self._remember_details(f"{chat_id}:{message_id}", _ToolDetails(original=final_html, tools=tools))

    def _remember_details(self, key: str, details: _ToolDetails) -> None:
        self._tool_details[key] = details
        self._tool_details.move_to_end(key)
        while len(self._tool_details) > self.max_tool_details:
            self._tool_details.popitem(last=False)

    # ------------------------------------------------------------------
    # 入站处理
    # ------------------------------------------------------------------

    async def _on_start(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """异步函数说明：_on_start。"""
        if not update.message or not update.effective_user:
            return

        user = update.effective_user
        await update.message.reply_text(
            f"👋 Hi {user.first_name}! I'm Nene.\n\n"
            "Send me a message and I'll respond!"
        )

    async def _on_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """提取文本与图片说明，发布为入站消息。"""
        if not update.message or not update.effective_user:
            return

        message = update.message
        user = update.effective_user
        chat_id = message.chat_id

        # sender_id 带上用户名，方便 allow_from 用任一形式配置
        sender_id = str(user.id)
        if user.username:
            sender_id = f"{sender_id}|{user.username}"

        content_parts = []
        if message.text:
            content_parts.append(message.text)
        if message.caption:
            content_parts.append(message.caption)
        content = "\n".join(content_parts)
        if not content:
            return

        logger.debug(f"Telegram message from {sender_id}: {content[:50]}...")

        if self.is_allowed(sender_id):
            try:
                await context.bot.send_chat_action(chat_id=chat_id, action=ChatAction.TYPING)
            except TelegramError as e:
                logger.debug(f"Failed to send typing action: {e}")

        await self._handle_message(
            sender_id=sender_id,
            chat_id=str(chat_id),
            content=content,
            metadata={
                "message_id": message.message_id,
                "user_id": user.id,
                "username": user.username,
                "first_name": user.first_name,
                "is_group": message.chat.type != "private"
            }
        )

    async def _on_callback(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """处理“查看详情”分页与返回按钮。"""
        query = update.callback_query
        if not query or not query.message:
            return
        await query.answer()

        key = f"{query.message.chat_id}:{query.message.message_id}"
        details = self._tool_details.get(key)
        if details is None:
            return
        self._tool_details.move_to_end(key)

        data = query.data or ""
        try:
            if data == BACK_CALLBACK:
                await query.edit_message_text(
                    text=details.original,
                    parse_mode=ParseMode.HTML,
                    reply_markup=InlineKeyboardMarkup([[
                        InlineKeyboardButton("📋 View Details", callback_data=f"{DETAILS_CALLBACK}:0"),
                    ]]),
                )
            elif data.startswith(f"{DETAILS_CALLBACK}:"):
                page = int(data.split(":", 1)[1])
                text, markup = self._detail_page(details, page)
                await query.edit_message_text(text=text, parse_mode=ParseMode.HTML, reply_markup=markup)
        except (TelegramError, ValueError) as e:
            logger.warning(f"Failed to show tool details: {e}")

    @staticmethod
    def _detail_page(details: _ToolDetails, page: int) -> tuple[str, InlineKeyboardMarkup]:
        """渲染单个工具调用的详情页。"""
        total = len(details.tools)
        page = max(0, min(page, total - 1))
        tool = details.tools[page]

        lines = [f"<b>🔧 {_escape_html(tool['name'])}</b> ({page + 1}/{total})"]
        if tool.get("input"):
            pretty = json.dumps(tool["input"], indent=2, ensure_ascii=False)
            lines.append(f"\n<b>Input:</b>\n<pre>{_escape_html(pretty[:1500])}</pre>")
        if tool.get("output"):
            lines.append(f"\n<b>Output:</b>\n<pre>{_escape_html(tool['output'][:1500])}</pre>")
        if tool.get("error"):
            lines.append(f"\n<b>Error:</b>\n<pre>{_escape_html(tool['error'][:1500])}</pre>")

        nav = []
        if page > 0:
            nav.append(InlineKeyboardButton("⬅️ Prev", callback_data=f"{DETAILS_CALLBACK}:{page - 1}"))
        if page < total - 1:
            nav.append(InlineKeyboardButton("Next ➡️", callback_data=f"{DETAILS_CALLBACK}:{page + 1}"))
        rows = [nav] if nav else []
        rows.append([InlineKeyboardButton("🔙 Back", callback_data=BACK_CALLBACK)])
        return "\n".join(lines), InlineKeyboardMarkup(rows)
