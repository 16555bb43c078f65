"""模型后端注册表。

显式构造并传递，不使用进程级单例：同一进程里可以并存多套配置，
测试也能拿到互相隔离的实例。
"""

import threading
from typing import Callable

from nene.config.schema import ProviderConfig
from nene.errors import ConfigError
from nene.providers.base import LLMProvider

ProviderFactory = Callable[[ProviderConfig, str], LLMProvider]


def litellm_factory(config: ProviderConfig, model: str) -> LLMProvider:
    """默认工厂：所有厂商都走 LiteLLM。"""
    from nene.providers.litellm_provider import LiteLLMProvider

    return LiteLLMProvider(
        api_key=config.api_key or None,
        api_base=config.api_base,
        default_model=model,
    )


class ProviderRegistry:
    """按 id 管理 provider 实例与工厂。"""

    def __init__(self):
        self._lock = threading.RLock()
        self._providers: dict[str, LLMProvider] = {}
        self._factories: dict[str, ProviderFactory] = {}
        self._default_id: str | None = None

    def register_factory(self, provider_id: str, factory: ProviderFactory) -> None:
        with self._lock:
            self._factories[provider_id] = factory

    def register(self, provider_id: str, provider: LLMProvider) -> None:
        """注册实例；第一个注册的实例成为默认。"""
        with self._lock:
            self._providers[provider_id] = provider
            if self._default_id is None:
                self._default_id = provider_id

    def create(self, provider_id: str, config: ProviderConfig, model: str) -> LLMProvider:
        """用已登记的工厂创建并注册 provider；没有专用工厂时退回 LiteLLM。"""
        with self._lock:
            factory = self._factories.get(provider_id, litellm_factory)
        provider = factory(config, model)
        self.register(provider_id, provider)
        return provider

    def get(self, provider_id: str) -> LLMProvider | None:
        with self._lock:
            return self._providers.get(provider_id)

    def set_default(self, provider_id: str) -> None:
        with self._lock:
            if provider_id not in self._providers:
                raise ConfigError(f"provider not registered: {provider_id}")
            self._default_id = provider_id

    def default(self) -> LLMProvider:
        with self._lock:
            if self._default_id is None:
                raise ConfigError("no provider registered")
            return self._providers[self._default_id]

    def list_providers(self) -> list[str]:
        with self._lock:
            return list(self._providers)
