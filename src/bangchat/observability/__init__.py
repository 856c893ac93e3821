from bangchat.observability.logger import bind_session, clear_session, get_logger, setup_logging

__all__ = ["bind_session", "clear_session", "get_logger", "setup_logging"]
