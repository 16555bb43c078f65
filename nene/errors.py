"""异常定义。

按错误归属划分：
- ProviderError: 模型调用失败，终止本轮对话。
- MaxIterationsExceeded: 工具循环达到上限，可恢复地终止本轮。
- BusClosedError: 总线关闭后仍在发布，属于编程错误。
- ConfigError: 配置缺失或非法。
"""


class NeneError(Exception):
    """所有 nene 异常的基类。"""


class ProviderError(NeneError):
    """模型后端调用失败（网络、鉴权、响应格式等）。"""


class MaxIterationsExceeded(NeneError):
    """Agent 循环超过最大迭代次数。"""

    def __init__(self, iterations: int):
        super().__init__(f"maximum iterations ({iterations}) reached")
        self.iterations = iterations


class BusClosedError(NeneError):
    """向已关闭的消息总线发布消息。"""


class ConfigError(NeneError):
    """配置错误。"""
