"""上下文构建模块。

负责生成会话的系统提示词：身份说明、运行环境、当前时间，
以及工作区里的引导文件。配置中给出 system_prompt 时整体替换默认身份段。
"""

from datetime import datetime
from pathlib import Path

from nene.utils.helpers import host_os

DEFAULT_IDENTITY = """You are Nene, a helpful AI assistant accessible via Telegram.

You can help users with various tasks including:
- Answering questions
- Writing and editing code
- Running shell commands
- Reading and writing files
- General problem-solving

When using tools:
- Be clear about what you're doing
- Show the results to the user
- Ask for confirmation if a tool action might be destructive

Current platform: {platform}"""


class ContextBuilder:
    """构建系统提示词。"""

    BOOTSTRAP_FILES = ["AGENTS.md", "SOUL.md", "USER.md", "TOOLS.md"]

    def __init__(self, workspace: Path, system_prompt: str = ""):
        self.workspace = workspace
        self.system_prompt = system_prompt

    def build_system_prompt(self, channel: str | None = None, chat_id: str | None = None) -> str:
        """拼接 system prompt。

        组成顺序：身份 -> 运行环境 -> 引导文件 -> 当前会话。
        """
        parts = [self._get_identity()]

        bootstrap = self._load_bootstrap_files()
        if bootstrap:
            parts.append(bootstrap)

        prompt = "\n\n---\n\n".join(parts)
        if channel and chat_id:
            prompt += f"\n\n## Current Session\nChannel: {channel}\nChat ID: {chat_id}"
        return prompt

    def _get_identity(self) -> str:
        """身份段落；配置了自定义提示词时直接使用。"""
        if self.system_prompt:
            return self.system_prompt

        now = datetime.now().strftime("%Y-%m-%d %H:%M (%A)")
        workspace_path = str(self.workspace.expanduser().resolve())
        identity = DEFAULT_IDENTITY.format(platform=host_os())
        return f"""{identity}

## Current Time
{now}

## Workspace
Your workspace is at: {workspace_path}"""

    def _load_bootstrap_files(self) -> str:
        """读取工作区里的引导文件并按顺序拼接。"""
        parts = []

        for filename in self.BOOTSTRAP_FILES:
            file_path = self.workspace / filename
            if file_path.exists():
                content = file_path.read_text(encoding="utf-8")
                parts.append(f"## {filename}\n\n{content}")

        return "\n\n".join(parts) if parts else ""
