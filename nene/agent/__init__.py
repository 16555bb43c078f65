"""模块说明：__init__。"""

from nene.agent.context import ContextBuilder
from nene.agent.loop import AgentLoop
from nene.agent.memory import MemoryStore
from nene.agent.session import AgentSession, SessionState
from nene.agent.subagent import SubagentManager, SubagentResult, SubagentTask

__all__ = [
    "AgentLoop",
    "AgentSession",
    "ContextBuilder",
    "MemoryStore",
    "SessionState",
    "SubagentManager",
    "SubagentResult",
    "SubagentTask",
]
