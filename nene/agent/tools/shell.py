"""Shell 命令执行工具。"""

import asyncio
import os
import sys
from pathlib import Path
from typing import Any

from loguru import logger

from nene.agent.tools.base import Approval, Tool, ToolResult

MAX_OUTPUT_CHARS = 10000


class ShellTool(Tool):
    """通过系统 shell 执行命令，合并返回 stdout 与 stderr。"""

    def __init__(self, working_dir: str | None = None, timeout: int = 60):
        self.working_dir = working_dir
        self.timeout = timeout

    @property
    def name(self) -> str:
        return "shell"

    @property
    def description(self) -> str:
        return (
            "Runs arbitrary commands like using a terminal. The command line should be single line "
            "if possible. Strings collected from stdout and stderr will be returned as the tool's output."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "cmdline": {"type": "string", "description": "The command line to run"},
            },
            "required": ["cmdline"],
        }

    def make_approval(self, params: dict[str, Any]) -> Approval | None:
        return Approval("Agent wants to run the command", params.get("cmdline", ""))

    async def execute(self, cmdline: str, **kwargs: Any) -> ToolResult:
        if sys.platform == "win32":
            argv = [os.environ.get("COMSPEC", "cmd.exe"), "/c", cmdline]
        else:
            argv = [os.environ.get("SHELL") or "/bin/sh", "-c", cmdline]

        cwd = self.working_dir if self.working_dir and Path(self.working_dir).is_dir() else None
        logger.debug(f"shell: {cmdline}")

        process = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            cwd=cwd,
        )
        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return ToolResult.error(f"command timed out after {self.timeout} seconds")
        except asyncio.CancelledError:
            # 调用方取消时结束子进程，避免遗留孤儿进程
            process.kill()
            raise

        output = stdout.decode("utf-8", errors="replace")
        if len(output) > MAX_OUTPUT_CHARS:
            output = output[:MAX_OUTPUT_CHARS] + "\n... (truncated)"

        if process.returncode != 0:
            return ToolResult.error(f"{output}\nError: exit status {process.returncode}")
        return ToolResult.ok(output)
