from .web import create_app, get_log_level, listen_and_serve, set_log_level

__all__ = ["create_app", "get_log_level", "listen_and_serve", "set_log_level"]
