from careconnect.core.session.manager import ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, SessionListener, SessionManager

__all__ = ["ACCESS_TOKEN_KEY", "REFRESH_TOKEN_KEY", "SessionListener", "SessionManager"]
