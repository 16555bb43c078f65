"""模块说明：__init__。"""

from nene.session.manager import SessionManager

__all__ = ["SessionManager"]
