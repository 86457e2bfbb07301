from .result_sink import ResultSink

# Ports are Protocols; concrete implementations live in bdd_kernel.adapters.
__all__ = ["ResultSink"]
