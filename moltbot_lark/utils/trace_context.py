import contextvars
import logging
import time
import uuid

_trace_id_ctx = contextvars.ContextVar("trace_id", default="")


class TraceContext:
    """
    Request tracing context.

    Each inbound chat message is handled inside its own trace so that every log
    line produced on its behalf carries the same id. Usable as a context
    manager::

        with TraceContext("msg") as trace_id:
            ...
    """

    def __init__(self, prefix: str = "", trace_id: str = ""):
        self.trace_id = trace_id or self.generate(prefix)
        self._token = None

    def __enter__(self) -> str:
        self._token = _trace_id_ctx.set(self.trace_id)
        return self.trace_id

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        _trace_id_ctx.reset(self._token)
        self._token = None

    @staticmethod
    def set(trace_id: str):
        """Set the trace id for the current context."""
        return _trace_id_ctx.set(trace_id)

    @staticmethod
    def get() -> str:
        """Get the trace id of the current context."""
        return _trace_id_ctx.get()

    @staticmethod
    def generate(prefix: str = "") -> str:
        """Generate a new trace id (prefix + timestamp + first 8 chars of a UUID)."""
        timestamp = int(time.time())
        unique_id = str(uuid.uuid4())[:8]
        if prefix:
            return f"{prefix}-{timestamp}-{unique_id}"
        return f"{timestamp}-{unique_id}"

    @staticmethod
    def clear():
        """Clear the trace id of the current context."""
        _trace_id_ctx.set("")


class TraceLogFilter(logging.Filter):
    """
    Log filter that injects the current trace id into each record.
    """

    def filter(self, record):
        record.trace_id = _trace_id_ctx.get()
        return True
