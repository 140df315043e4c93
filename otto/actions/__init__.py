from otto.actions.dispatcher import ActionDispatcher, AuthConfig

__all__ = ["ActionDispatcher", "AuthConfig"]
