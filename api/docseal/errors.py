from typing import Optional


class PipelineError(Exception):
    """Base class for failures of a single generation or signing item."""


class TemplateError(PipelineError):
    pass


class ConversionError(PipelineError):
    def __init__(self, engine: str, cause: str, code: Optional[int] = None, transient: bool = False):
        self.engine = engine
        self.cause = cause
        self.code = code
        self.transient = transient
        message = f"{engine} conversion failed: {cause}"
        if code is not None:
            message += f" (engine code {code})"
        super().__init__(message)


class ParseError(PipelineError):
    pass


class DecryptError(PipelineError):
    pass


class SigningError(PipelineError):
    # reason: secret | unlock | signature
    def __init__(self, reason: str, cause: str):
        self.reason = reason
        self.cause = cause
        super().__init__(f"signing failed ({reason}): {cause}")


class SecurityError(PipelineError):
    pass


class ConfigError(RuntimeError):
    pass


class BundleError(RuntimeError):
    pass
