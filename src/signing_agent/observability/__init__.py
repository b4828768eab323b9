from signing_agent.observability.logger import bind_agent, clear_agent, get_logger, setup_logging

__all__ = ["bind_agent", "clear_agent", "get_logger", "setup_logging"]
