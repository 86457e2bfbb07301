from .logging import LOG_LEVELS, KernelLogger, LogMessage, LogSink

__all__ = ["LOG_LEVELS", "KernelLogger", "LogMessage", "LogSink"]
