"""
Error taxonomy and reporting for NetScope.

Per-item failures (a malformed reference, an undecodable string, a failed
annotation write) are recovered where they happen and logged with the
offending address. Host and catalog failures propagate to the caller and are
shown to the user through the ErrorHandler.
"""

import sys
import traceback
import logging
from enum import Enum
from typing import Optional, Dict, Any
from dataclasses import dataclass


class ErrorSeverity(Enum):
    """Error severity levels."""
    CRITICAL = "CRITICAL"
    ERROR = "ERROR"
    WARNING = "WARNING"
    INFO = "INFO"


class ErrorCategory(Enum):
    """Categories of errors that can occur."""
    INPUT_ERROR = "Input Error"
    HOST_ERROR = "Host Error"
    REFERENCE_ERROR = "Reference Error"
    DECODE_ERROR = "Decode Error"
    ANNOTATION_ERROR = "Annotation Error"
    CONFIGURATION_ERROR = "Configuration Error"
    INTERNAL_ERROR = "Internal Error"


@dataclass
class ErrorContext:
    """Context information for an error."""
    binary_path: Optional[str] = None
    procedure: Optional[str] = None
    address: Optional[int] = None
    symbol: Optional[str] = None
    additional_info: Optional[Dict[str, Any]] = None


class NetScopeError(Exception):
    """Base exception class for NetScope errors."""

    recoverable = False

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.INTERNAL_ERROR,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: Optional[ErrorContext] = None,
        suggestion: Optional[str] = None,
        original_exception: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.suggestion = suggestion
        self.original_exception = original_exception

    def short(self) -> str:
        """One-line form used for per-item log records."""
        where = f" at {self.context.address:#x}" if self.context.address is not None else ""
        return f"{self.category.value}{where}: {self.message}"

    def __str__(self):
        """Format error message with all context."""
        lines = [
            f"\n{'='*70}",
            f"{self.severity.value}: {self.category.value}",
            f"{'='*70}",
            f"\nMessage: {self.message}",
        ]

        if self.context.binary_path:
            lines.append(f"Binary: {self.context.binary_path}")
        if self.context.procedure:
            lines.append(f"Procedure: {self.context.procedure}")
        if self.context.address is not None:
            lines.append(f"Address: {self.context.address:#x}")
        if self.context.symbol:
            lines.append(f"Symbol: {self.context.symbol}")
        if self.context.additional_info:
            lines.append("\nAdditional Information:")
            for key, value in self.context.additional_info.items():
                lines.append(f"  {key}: {value}")

        if self.suggestion:
            lines.append(f"\nSuggestion: {self.suggestion}")

        if self.original_exception:
            lines.append(f"\nOriginal Exception: {type(self.original_exception).__name__}")
            lines.append(f"  {str(self.original_exception)}")

        lines.append(f"{'='*70}\n")

        return "\n".join(lines)


class InputError(NetScopeError):
    """Analysis target could not be opened."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, category=ErrorCategory.INPUT_ERROR, **kwargs)


class HostDataUnavailable(NetScopeError):
    """The host could not provide its procedure or string table. Fatal for the run."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.CRITICAL)
        kwargs.setdefault(
            "suggestion",
            "Make sure the binary is loaded and analysis has finished in the host.",
        )
        super().__init__(message, category=ErrorCategory.HOST_ERROR, **kwargs)


class MalformedReference(NetScopeError):
    """A reference edge reported by the host cannot be interpreted."""

    recoverable = True

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.WARNING)
        super().__init__(message, category=ErrorCategory.REFERENCE_ERROR, **kwargs)


class StringDecodeError(NetScopeError):
    """A string literal could not be decoded to text."""

    recoverable = True

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.WARNING)
        super().__init__(message, category=ErrorCategory.DECODE_ERROR, **kwargs)


class AnnotationWriteFailure(NetScopeError):
    """Writing a finding back into the host document failed."""

    recoverable = True

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.WARNING)
        super().__init__(message, category=ErrorCategory.ANNOTATION_ERROR, **kwargs)


class ConfigurationError(NetScopeError):
    """A catalog extension file is invalid."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("suggestion", "Check the catalog file against catalogs/extra_signatures.json.")
        super().__init__(message, category=ErrorCategory.CONFIGURATION_ERROR, **kwargs)


class CatalogLoadConflict(ConfigurationError):
    """The same symbol name was registered twice in the signature catalog."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.CRITICAL)
        kwargs.setdefault("suggestion", "Remove the duplicate entry; symbol names must be unique.")
        super().__init__(message, **kwargs)


class ErrorHandler:
    """Central error handler for NetScope."""

    LOGGER_NAME = "netscope"

    def __init__(self, debug_mode: bool = False):
        self.debug_mode = debug_mode
        self.logger = self._setup_logger()

    def _setup_logger(self) -> logging.Logger:
        """Set up logging configuration."""
        logger = logging.getLogger(self.LOGGER_NAME)
        logger.setLevel(logging.DEBUG if self.debug_mode else logging.INFO)

        if not logger.handlers:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setLevel(logging.DEBUG if self.debug_mode else logging.INFO)
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            console_handler.setFormatter(formatter)
            logger.addHandler(console_handler)

        return logger

    def handle_error(
        self,
        error: Exception,
        context: Optional[ErrorContext] = None,
        reraise: bool = False
    ):
        """
        Handle an error with appropriate logging and reporting.

        Args:
            error: The exception to handle
            context: Additional context information
            reraise: Whether to re-raise the exception after handling
        """
        if isinstance(error, NetScopeError):
            self._log_netscope_error(error)
        else:
            wrapped = NetScopeError(
                message=str(error),
                context=context,
                original_exception=error
            )
            self._log_netscope_error(wrapped)

        if self.debug_mode:
            traceback.print_exc()

        if reraise:
            raise error

    def _log_netscope_error(self, error: NetScopeError):
        """Log a NetScope error with appropriate level."""
        # Recoverable errors get the one-line form
        error_message = error.short() if error.recoverable else str(error)

        if error.severity == ErrorSeverity.CRITICAL:
            self.logger.critical(error_message)
        elif error.severity == ErrorSeverity.ERROR:
            self.logger.error(error_message)
        elif error.severity == ErrorSeverity.WARNING:
            self.logger.warning(error_message)
        else:
            self.logger.info(error_message)

