"""Agent 主循环模块。

该模块从消息总线消费入站消息，按会话分派给 AgentSession 处理，
并把最终回复或错误提示重新发布到总线，是 nene 的核心编排层。
"""

import asyncio
from pathlib import Path

from loguru import logger

from nene.agent.context import ContextBuilder
from nene.agent.memory import MemoryStore
from nene.agent.session import DEFAULT_MAX_ITERATIONS, AgentSession
from nene.agent.subagent import SubagentManager
from nene.agent.tools.filesystem import ListFilesTool, ReadFileTool, WriteFileTool
from nene.agent.tools.memory import MemoryForgetTool, MemoryRecallTool, MemoryStoreTool
from nene.agent.tools.message import MessageTool
from nene.agent.tools.registry import ToolRegistry
from nene.agent.tools.shell import ShellTool
from nene.agent.tools.spawn import SpawnTool
from nene.agent.tools.think import ThinkTool
from nene.agent.tools.web import WebFetchTool, WebSearchTool
from nene.bus.events import InboundMessage, OutboundMessage, StreamEvent
from nene.bus.queue import MessageBus
from nene.config.schema import ExecToolConfig, WebFetchConfig
from nene.errors import BusClosedError, MaxIterationsExceeded, ProviderError
from nene.providers.base import LLMProvider
from nene.session.manager import SessionManager
from nene.utils.helpers import parse_session_key

ERROR_TAG = "[error] "
EMPTY_RESPONSE = "I've completed processing but have no response to give."


class AgentLoop:
    """消息处理主引擎。

    职责分工：
    1. 消费入站消息（inbound）。
    2. 每条消息启动一个 worker task，同一会话由 turn_lock 保证顺序执行，
       不同会话之间并发。
    3. 非流式消息把最终回复作为 outbound 发布；流式消息依赖 stream 事件。
    4. 处理失败时发布带 "[error] " 标记的提示，不中断主循环。
    """

    def __init__(
        self,
        bus: MessageBus,
        provider: LLMProvider,
        workspace: Path,
        model: str | None = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        system_prompt: str = "",
        max_tokens: int = 4096,
        temperature: float = 0.7,
        exec_config: ExecToolConfig | None = None,
        web_config: WebFetchConfig | None = None,
        restrict_to_workspace: bool = False,
        memory: MemoryStore | None = None,
        subagent_max_iterations: int = 10,
        subagent_timeout: float | None = None,
    ):
        self.bus = bus
        self.provider = provider
        self.workspace = workspace
        # 如果未显式指定模型，则使用 provider 的默认模型。
        self.model = model or provider.get_default_model()
        self.max_iterations = max_iterations
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.exec_config = exec_config or ExecToolConfig()
        self.web_config = web_config or WebFetchConfig()
        self.restrict_to_workspace = restrict_to_workspace
        self.memory = memory

        self.context = ContextBuilder(workspace, system_prompt)
        self.tools = ToolRegistry()
        self.subagents = SubagentManager(
            provider=provider,
            tools=self.tools,
            model=self.model,
            max_iterations=subagent_max_iterations,
            timeout=subagent_timeout,
        )
        self.sessions = SessionManager(self._create_session)

        self._cancel = asyncio.Event()
        self._workers: set[asyncio.Task[None]] = set()
        self._register_default_tools()

    def _register_default_tools(self) -> None:
        """注册默认工具集。

        注册只在这里发生一次，之后工具表视为只读。
        """
        # 文件工具：可选地限制在工作目录内，避免越界读写。
        allowed_dir = self.workspace if self.restrict_to_workspace else None
        self.tools.register(ReadFileTool(allowed_dir=allowed_dir))
        self.tools.register(WriteFileTool(allowed_dir=allowed_dir))
        self.tools.register(ListFilesTool(allowed_dir=allowed_dir))

        self.tools.register(ShellTool(
            working_dir=str(self.workspace),
            timeout=self.exec_config.timeout,
        ))

        # 网络工具：搜索 + 页面抓取。
        self.tools.register(WebSearchTool())
        self.tools.register(WebFetchTool(
            max_chars=self.web_config.max_chars,
            timeout=self.web_config.timeout,
        ))

        self.tools.register(ThinkTool())
        self.tools.register(MessageTool(send_callback=self.bus.publish_outbound))
        self.tools.register(SpawnTool(manager=self.subagents))

        # 记忆工具：仅在提供了记忆库时可用。
        if self.memory is not None:
            self.tools.register(MemoryStoreTool(self.memory))
            self.tools.register(MemoryRecallTool(self.memory))
            self.tools.register(MemoryForgetTool(self.memory))

    def _create_session(self, key: str) -> AgentSession:
        try:
            channel, chat_id = parse_session_key(key)
        except ValueError:
            channel, chat_id = key, ""
        return AgentSession(
            provider=self.provider,
            tools=self.tools,
            bus=self.bus,
            model=self.model,
            system_prompt=self.context.build_system_prompt(channel, chat_id),
            max_iterations=self.max_iterations,
            key=key,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )

    async def run(self) -> None:
        """启动主循环并持续处理入站消息，直到 stop() 或总线关闭。"""
        self._cancel.clear()
        logger.info("Agent loop started")

        try:
            while not self._cancel.is_set():
                msg = await self.bus.consume_inbound(cancel=self._cancel)
                if msg is None:
                    break
                task = asyncio.create_task(self._handle(msg))
                self._workers.add(task)
                task.add_done_callback(self._workers.discard)
        finally:
            # 停止时取消所有在途回合
            workers = list(self._workers)
            for task in workers:
                task.cancel()
            if workers:
                await asyncio.gather(*workers, return_exceptions=True)
            logger.info("Agent loop stopped")

    def stop(self) -> None:
        """请求停止主循环。"""
        self._cancel.set()
        logger.info("Agent loop stopping")

    @property
    def active_turns(self) -> int:
        return len(self._workers)

    async def _handle(self, msg: InboundMessage) -> None:
        """处理单条消息；异常只终止本回合。"""
        try:
            response = await self._process_message(msg)
            if response is not None:
                await self.bus.publish_outbound(response)
        except asyncio.CancelledError:
            logger.warning(f"Turn for {msg.session_key} cancelled")
            if msg.stream_mode:
                await self._publish_stream_failure(msg, "request cancelled")
            raise
        except BusClosedError:
            logger.debug(f"Bus closed while handling {msg.session_key}")
        except Exception as e:
            logger.error(f"Error processing message: {e}")
            if msg.stream_mode:
                # 会话已为这两类错误发布过 error 事件
                if not isinstance(e, (ProviderError, MaxIterationsExceeded)):
                    await self._publish_stream_failure(msg, str(e))
                return
            await self._publish_error_notice(msg, str(e))

    async def _publish_stream_failure(self, msg: InboundMessage, error: str) -> None:
        """发布 error 事件，使渲染端清理该会话的流式状态。"""
        if self.bus.closed:
            return
        try:
            await self.bus.publish_stream(StreamEvent.failure(msg.channel, msg.chat_id, msg.session_key, error))
        except BusClosedError:
            logger.debug("Bus closed, dropping stream failure event")

    async def _publish_error_notice(self, msg: InboundMessage, error: str) -> None:
        try:
            await self.bus.publish_outbound(OutboundMessage(
                channel=msg.channel,
                chat_id=msg.chat_id,
                content=f"{ERROR_TAG}{error}",
            ))
        except BusClosedError:
            logger.debug("Bus closed, dropping error notice")

    async def _process_message(self, msg: InboundMessage) -> OutboundMessage | None:
        """处理单条普通消息并生成回复。"""
        logger.info(f"Processing message from {msg.channel}:{msg.sender_id}")

        # 以 channel:chat_id 作为会话键，确保上下文隔离。
        session = self.sessions.get_or_create(msg.session_key)
        final_content = await session.process(msg)

        if msg.stream_mode:
            return None
        return OutboundMessage(
            channel=msg.channel,
            chat_id=msg.chat_id,
            content=final_content or EMPTY_RESPONSE,
        )

    async def process_direct(
        self,
        content: str,
        session_key: str = "cli:direct",
        channel: str = "cli",
        chat_id: str = "direct",
    ) -> str:
        """给 CLI 场景使用的直接调用入口。"""
        msg = InboundMessage(
            channel=channel,
            sender_id="user",
            chat_id=chat_id,
            content=content,
            session_key_override=session_key,
        )

        response = await self._process_message(msg)
        return response.content if response else ""
