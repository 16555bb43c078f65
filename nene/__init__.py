"""nene - 轻量级个人 AI 助手。"""

__version__ = "0.1.0"
__logo__ = "🐱"
