from .system_log_handler import SystemLogHandler, parse_category

__all__ = ["SystemLogHandler", "parse_category"]
