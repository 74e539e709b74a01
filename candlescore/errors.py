from __future__ import annotations


class InputError(ValueError):
    """Candle series for a symbol is empty or unusable."""


class SourceUnavailable(RuntimeError):
    def __init__(self, message: str, *, symbol: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.symbol = symbol
        self.status_code = status_code


class RunFatalError(RuntimeError):
    """Failure before any row-level work started; nothing was written."""


class ConfigError(RunFatalError):
    pass
