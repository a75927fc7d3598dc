"""Exceptions raised by the agent proxy core."""


class ProxyError(Exception):
    """Base class for agent proxy errors."""


class SupervisorError(ProxyError):
    """Invalid use of the process supervisor."""


class SupervisorNotStartedError(SupervisorError):
    """A message was sent before the supervisor was started."""

    def __init__(self) -> None:
        super().__init__("Agent supervisor has not been started")


class BusyError(SupervisorError):
    """A message arrived while a job is already in flight."""

    def __init__(self) -> None:
        super().__init__("Agent is currently processing another message")


class SinkClosedError(ProxyError):
    """An event was pushed to a sink whose connection is gone."""
