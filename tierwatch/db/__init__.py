from .state_store import ServiceLogEntry, SQLiteLoggingHandler, StateStore

__all__ = ["ServiceLogEntry", "SQLiteLoggingHandler", "StateStore"]
