"""Exceptions raised by the JSON splitter."""


class SplitterError(RuntimeError):
    """Base class for splitter failures."""


class MalformedStreamError(SplitterError):
    """The token stream could not be read; the original error is the ``__cause__``."""


class ContractViolationError(SplitterError):
    """A visitor or caller broke the splitter's usage contract."""
