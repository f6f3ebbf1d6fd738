"""Error kinds raised by the evaluation core."""


class AnalyzerError(Exception):
    """Base class for all meter analyzer errors."""


class ValidationError(AnalyzerError, ValueError):
    """Operator arguments or input families failed validation."""


class ParseError(ValidationError):
    """A textual argument (duration, bucket bound, regex) could not be parsed."""
