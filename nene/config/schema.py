"""配置模型。"""

from pathlib import Path
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TelegramConfig(BaseModel):
    """类说明：TelegramConfig。"""
    enabled: bool = False
    token: str = ""  # Bot token from @BotFather
    allow_from: list[str] = Field(default_factory=list)  # Allowed user IDs or usernames
    proxy: str | None = None  # HTTP/SOCKS5 proxy URL, e.g. "http://127.0.0.1:7890"
    stream_mode: bool = True  # 以实时编辑的消息展示生成过程


class ChannelsConfig(BaseModel):
    """类说明：ChannelsConfig。"""
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)


class AgentDefaults(BaseModel):
    """类说明：AgentDefaults。"""
    workspace: str = "~/.nene/workspace"
    model: str = "openai/gpt-4o"
    max_tokens: int = 8192
    temperature: float = 0.7
    max_tool_iterations: int = 20
    subagent_max_iterations: int = 10
    subagent_timeout: float | None = 300.0  # 单次 spawn 的整体超时（秒），None 表示不限
    system_prompt: str = ""  # 为空时使用内置提示词


class AgentsConfig(BaseModel):
    """类说明：AgentsConfig。"""
    defaults: AgentDefaults = Field(default_factory=AgentDefaults)


class ProviderConfig(BaseModel):
    """类说明：ProviderConfig。"""
    api_key: str = ""
    api_base: str | None = None


class ProvidersConfig(BaseModel):
    """类说明：ProvidersConfig。"""
    anthropic: ProviderConfig = Field(default_factory=ProviderConfig)
    openai: ProviderConfig = Field(default_factory=ProviderConfig)
    azure: ProviderConfig = Field(default_factory=ProviderConfig)
    openrouter: ProviderConfig = Field(default_factory=ProviderConfig)
    deepseek: ProviderConfig = Field(default_factory=ProviderConfig)
    groq: ProviderConfig = Field(default_factory=ProviderConfig)
    gemini: ProviderConfig = Field(default_factory=ProviderConfig)
    vllm: ProviderConfig = Field(default_factory=ProviderConfig)


class BusConfig(BaseModel):
    """类说明：BusConfig。"""
    capacity: int = 100


class StreamConfig(BaseModel):
    """流式渲染相关参数。"""
    render_interval_ms: int = 500
    state_ttl_s: float = 900.0  # 超过该时间没有新事件的会话状态会被清理
    sweep_interval_s: float = 60.0


class WebFetchConfig(BaseModel):
    """类说明：WebFetchConfig。"""
    max_chars: int = 10000
    timeout: float = 30.0


class ExecToolConfig(BaseModel):
    """类说明：ExecToolConfig。"""
    timeout: int = 60


class ToolsConfig(BaseModel):
    """类说明：ToolsConfig。"""
    web: WebFetchConfig = Field(default_factory=WebFetchConfig)
    exec: ExecToolConfig = Field(default_factory=ExecToolConfig)
    restrict_to_workspace: bool = False  # If true, restrict file tools to the workspace directory


class Config(BaseSettings):
    """类说明：Config。"""

    model_config = SettingsConfigDict(env_prefix="NENE_", env_nested_delimiter="__")

    agents: AgentsConfig = Field(default_factory=AgentsConfig)
    channels: ChannelsConfig = Field(default_factory=ChannelsConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    bus: BusConfig = Field(default_factory=BusConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)

    @property
    def workspace_path(self) -> Path:
        """函数说明：workspace_path。"""
        return Path(self.agents.defaults.workspace).expanduser()

    def _match_provider(self, model: str | None = None) -> tuple[str, ProviderConfig] | None:
        """按模型名关键字匹配已配置 key 的 provider。"""
        model = (model or self.agents.defaults.model).lower()
        providers = {
            "openrouter": ("openrouter", self.providers.openrouter),
            "deepseek": ("deepseek", self.providers.deepseek),
            "anthropic": ("anthropic", self.providers.anthropic),
            "claude": ("anthropic", self.providers.anthropic),
            "azure": ("azure", self.providers.azure),
            "openai": ("openai", self.providers.openai),
            "gpt": ("openai", self.providers.openai),
            "gemini": ("gemini", self.providers.gemini),
            "groq": ("groq", self.providers.groq),
            "vllm": ("vllm", self.providers.vllm),
        }
        for keyword, (name, provider) in providers.items():
            if keyword in model and provider.api_key:
                return name, provider
        return None

    def get_provider(self, model: str | None = None) -> tuple[str, ProviderConfig]:
        """返回 (provider 名称, 配置)；未匹配时取第一个配置了 key 的。"""
        matched = self._match_provider(model)
        if matched:
            return matched
        for name, provider in self.providers:
            if provider.api_key:
                return name, provider
        return "openai", self.providers.openai
