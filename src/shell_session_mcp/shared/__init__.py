"""共享组件：telemetry、响应格式化、外部进程工具与代码搜索。"""

from .telemetry import Telemetry
from .response_formatter import format_error_response, format_text_response

__all__ = [
    "Telemetry",
    "format_error_response",
    "format_text_response",
]
