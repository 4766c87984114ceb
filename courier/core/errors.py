"""Rust-style error display for courier validation and dispatch errors."""

from __future__ import annotations

import inspect
import linecache
import os
import sys
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

# Absolute path to the courier package directory.
# Used by _find_user_frame to distinguish library frames from user code.
_COURIER_PKG_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


class ErrorCode(str, Enum):
    """Error codes for courier errors.

    Organized by category:
    - E100-E199: Dispatch target errors (schedule-time)
    - E200-E299: Envelope errors (dispatch-time)
    - E300-E399: Registry errors
    - E400-E499: Config/CLI errors
    """

    # Dispatch targets (E100-E199)
    TARGET_GENERIC_TYPE = 'E100'
    TARGET_OVERLOADED = 'E101'
    TARGET_SYNTHESIZED = 'E102'
    TARGET_PARAMETER_COUNT = 'E103'
    TARGET_NO_DECLARING_TYPE = 'E104'
    TARGET_UNSUPPORTED_PARAMETER_TYPE = 'E105'

    # Envelope (E200-E299)
    ENVELOPE_MISSING_TYPE_NAME = 'E200'
    ENVELOPE_MISSING_METHOD_NAME = 'E201'
    ENVELOPE_MISSING_VALUE = 'E202'
    ENVELOPE_MALFORMED = 'E203'
    ENVELOPE_ARGUMENT_MISMATCH = 'E204'

    # Registry (E300-E399)
    TYPE_NOT_REGISTERED = 'E300'
    METHOD_NOT_FOUND = 'E301'
    REGISTRY_INVALID_SOURCE = 'E302'

    # Config/CLI (E400-E499)
    CONFIG_INVALID_QUEUE = 'E400'
    CONFIG_INVALID_CONSUMER = 'E401'
    QUEUE_INVALID_URL = 'E402'
    CLI_INVALID_ARGS = 'E403'
    CLI_INVALID_LOCATOR = 'E404'


# ANSI color codes
class _Colors:
    """ANSI escape codes for terminal colors."""

    RESET = '\033[0m'
    BOLD = '\033[1m'
    RED = '\033[91m'
    BLUE = '\033[94m'
    CYAN = '\033[96m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    DIM = '\033[2m'


class _NoColors:
    """No-op color codes for non-TTY output."""

    RESET = ''
    BOLD = ''
    RED = ''
    BLUE = ''
    CYAN = ''
    GREEN = ''
    YELLOW = ''
    DIM = ''


def _env_flag(name: str) -> bool:
    return os.environ.get(name, '').lower() in ('1', 'true', 'yes')


def _should_use_colors() -> bool:
    """Determine if colors should be used in output."""
    if _env_flag('COURIER_FORCE_COLOR'):
        return True

    # NO_COLOR standard (https://no-color.org/)
    if os.environ.get('NO_COLOR') is not None:
        return False

    return hasattr(sys.stderr, 'isatty') and sys.stderr.isatty()


def _should_show_verbose() -> bool:
    """Determine if verbose output (full traceback) should be shown."""
    return _env_flag('COURIER_VERBOSE')


def _should_use_plain_errors() -> bool:
    """Determine if plain Python errors should be used instead of Rust-style."""
    return _env_flag('COURIER_PLAIN_ERRORS')


@dataclass
class SourceLocation:
    """Source code location information."""

    file: str
    line: int
    column: int | None = None
    end_column: int | None = None

    @classmethod
    def from_frame(cls, frame: Any) -> SourceLocation:
        """Create SourceLocation from a frame object."""
        return cls(
            file=frame.f_code.co_filename,
            line=frame.f_lineno,
        )

    @classmethod
    def from_function(cls, fn: Callable[..., Any]) -> SourceLocation | None:
        """Create SourceLocation from a function object.

        Returns None if the callable doesn't have source location info
        (e.g., built-in functions, C extensions, or mock objects).
        """
        code = getattr(fn, '__code__', None)
        if code is None:
            return None
        return cls(
            file=code.co_filename,
            line=code.co_firstlineno,
        )

    def get_source_line(self) -> str | None:
        """Read the source line from the file."""
        try:
            line = linecache.getline(self.file, self.line)
            return line.rstrip('\n') if line else None
        except Exception:
            return None

    def format_short(self) -> str:
        """Format as 'file:line' or 'file:line:col'."""
        if self.column is not None:
            return f'{self.file}:{self.line}:{self.column}'
        return f'{self.file}:{self.line}'


@dataclass
class CourierError(Exception):
    """Base exception for courier errors.

    Provides Rust-style error formatting with:
    - Error code and category
    - Source location with code snippet
    - Notes and help text
    """

    message: str
    code: ErrorCode | None = None
    location: SourceLocation | None = None
    notes: list[str] = field(default_factory=lambda: [])
    help_text: str | None = None

    def __post_init__(self) -> None:
        super().__init__(self.message)

        # Auto-detect location from call stack if not provided
        if self.location is None:
            user_frame = _find_user_frame()
            if user_frame is not None:
                self.location = SourceLocation.from_frame(user_frame)

    def with_note(self, note: str) -> CourierError:
        """Add a note to the error (fluent API)."""
        self.notes.append(note)
        return self

    def with_help(self, help_text: str) -> CourierError:
        """Set help text (fluent API)."""
        self.help_text = help_text
        return self

    def with_location(self, location: SourceLocation) -> CourierError:
        """Set source location (fluent API)."""
        self.location = location
        return self

    def format_rust_style(self, use_colors: bool | None = None) -> str:
        """Format the error in Rust style."""
        if use_colors is None:
            use_colors = _should_use_colors()

        c = _Colors if use_colors else _NoColors
        lines: list[str] = ['']

        # Error header: error[E100]: message
        code_part = f'[{self.code.value}]' if self.code else ''
        lines.append(f'{c.BOLD}{c.RED}error{code_part}:{c.RESET} {self.message}')

        if self.location:
            source_line = self.location.get_source_line()
            lines.append(
                f'  {c.BLUE}-->{c.RESET} {c.CYAN}{self.location.format_short()}{c.RESET}'
            )

            if source_line:
                line_num = str(self.location.line)
                padding = ' ' * len(line_num)
                lines.append(f'   {c.BLUE}{padding}|{c.RESET}')
                lines.append(f'   {c.BLUE}{line_num}|{c.RESET} {source_line}')

                if self.location.column is not None:
                    start_col = self.location.column
                    end_col = self.location.end_column or (start_col + 1)
                    width = max(1, end_col - start_col)
                    underline = ' ' * start_col + '^' * width
                else:
                    stripped = source_line.lstrip()
                    indent = len(source_line) - len(stripped)
                    underline = ' ' * indent + '^' * len(stripped)
                lines.append(
                    f'   {c.BLUE}{padding}|{c.RESET} {c.RED}{underline}{c.RESET}'
                )

        # Notes (multi-line notes get continuation indentation)
        for note in self.notes:
            note_lines = note.split('\n')
            lines.append(
                f'   {c.BLUE}={c.RESET} {c.BOLD}{c.BLUE}note{c.RESET}: {note_lines[0]}'
            )
            for note_line in note_lines[1:]:
                lines.append(f'          {note_line}')

        if self.help_text:
            lines.append('')
            lines.append(f'   {c.BLUE}={c.RESET} {c.BOLD}{c.GREEN}help{c.RESET}:')
            for help_line in self.help_text.split('\n'):
                lines.append(f'        {help_line}')

        return '\n'.join(lines)

    def __str__(self) -> str:
        """Plain text representation (no ANSI colors).

        Colors are only used by the custom exception hook, so the string
        stays safe for logging and storage.
        """
        return self.format_rust_style(use_colors=False)


# Store original excepthook
_original_excepthook = sys.excepthook


def _courier_excepthook(
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_tb: Any,
) -> None:
    """Custom exception hook for CourierError exceptions."""
    if _should_use_plain_errors():
        _original_excepthook(exc_type, exc_value, exc_tb)
        return

    if isinstance(exc_value, CourierError):
        print(exc_value.format_rust_style(), file=sys.stderr)

        if _should_show_verbose():
            print(file=sys.stderr)
            c = _Colors if _should_use_colors() else _NoColors
            print(
                f'{c.DIM}Full traceback (COURIER_VERBOSE=1):{c.RESET}',
                file=sys.stderr,
            )
            traceback.print_exception(exc_type, exc_value, exc_tb, file=sys.stderr)
    else:
        _original_excepthook(exc_type, exc_value, exc_tb)


def install_error_handler() -> None:
    """Install the custom exception hook for Rust-style error display."""
    sys.excepthook = _courier_excepthook


# =============================================================================
# Specific Error Classes
# =============================================================================


@dataclass
class TargetError(CourierError):
    """Raised when a method cannot be used as a dispatch target."""

    pass


@dataclass
class UnsupportedTarget(TargetError):
    """The candidate method breaks one of the dispatch target shape rules.

    Raised at schedule time, before anything is published.
    """

    pass


@dataclass
class EnvelopeError(CourierError):
    """Raised when an envelope cannot be dispatched as-is."""

    pass


@dataclass
class InvalidEnvelope(EnvelopeError):
    """A malformed envelope reached the dispatcher.

    Treat the message as poison: retrying it will fail the same way.
    """

    pass


@dataclass
class ConfigurationError(CourierError):
    """Raised when queue/consumer configuration is invalid."""

    pass


@dataclass
class RegistryError(CourierError):
    """Raised when a type registry operation fails."""

    pass


class UnknownTarget(RegistryError, LookupError):
    """The envelope names a type or method the registry does not know.

    Signals a registration mismatch between producer and consumer.
    """

    def __init__(
        self,
        type_name: str,
        *,
        message: str,
        code: ErrorCode,
        notes: list[str] | None = None,
        help_text: str | None = None,
    ) -> None:
        RegistryError.__init__(
            self,
            message=message,
            code=code,
            notes=notes or [],
            help_text=help_text,
        )
        self.type_name = type_name


class UnknownType(UnknownTarget, KeyError):
    """The requested type was never passed to ``register``.

    Inherits from KeyError so Mapping.__contains__ and .get() work on the
    registry (they catch KeyError).
    """

    def __init__(self, type_name: str) -> None:
        UnknownTarget.__init__(
            self,
            type_name,
            message=f"type '{type_name}' is not registered",
            code=ErrorCode.TYPE_NOT_REGISTERED,
            notes=[f"requested type: '{type_name}'"],
            help_text=(
                'did you forget to register it?\n'
                'call registry.register(<module or class>) on the consumer '
                'before dispatching'
            ),
        )


class UnknownMethod(UnknownTarget):
    """The type is registered but exposes no dispatchable method by that name."""

    def __init__(self, type_name: str, method_name: str) -> None:
        UnknownTarget.__init__(
            self,
            type_name,
            message=f"type '{type_name}' has no dispatchable method '{method_name}'",
            code=ErrorCode.METHOD_NOT_FOUND,
            notes=[
                f"requested type: '{type_name}'",
                f"requested method: '{method_name}'",
            ],
            help_text=(
                'make sure producer and consumer run the same version of the type\n'
                'and that the method takes exactly one positional parameter'
            ),
        )
        self.method_name = method_name


# =============================================================================
# Phase-Gated Error Collection
# =============================================================================


class ValidationReport:
    """Collects multiple CourierError instances within a validation phase.

    Formats all collected errors together with a summary line,
    similar to rustc's multi-error output.
    """

    def __init__(self, phase_name: str) -> None:
        self.phase_name: str = phase_name
        self.errors: list[CourierError] = []

    def add(self, error: CourierError) -> None:
        """Append an error to the report."""
        self.errors.append(error)

    def has_errors(self) -> bool:
        """Return True if any errors were collected."""
        return len(self.errors) > 0

    def format_rust_style(self, use_colors: bool | None = None) -> str:
        """Format all collected errors, then append an aborting summary."""
        if use_colors is None:
            use_colors = _should_use_colors()

        c = _Colors if use_colors else _NoColors
        parts = [error.format_rust_style(use_colors=use_colors) for error in self.errors]
        parts.append(
            f'\n{c.BOLD}{c.RED}error{c.RESET}: aborting due to {len(self.errors)} previous errors'
        )
        return '\n'.join(parts)

    def __str__(self) -> str:
        return self.format_rust_style(use_colors=False)


@dataclass
class MultipleValidationErrors(CourierError):
    """Wraps a ValidationReport containing 2+ errors."""

    report: ValidationReport = field(default_factory=lambda: ValidationReport(''))

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f'aborting due to {len(self.report.errors)} previous errors'
        # Skip auto-location detection: location is per-error in the report
        super(CourierError, self).__init__(self.message)

    def format_rust_style(self, use_colors: bool | None = None) -> str:
        """Delegate formatting to the underlying report."""
        return self.report.format_rust_style(use_colors=use_colors)

    def __str__(self) -> str:
        return self.format_rust_style(use_colors=False)


def raise_collected(report: ValidationReport) -> None:
    """Raise collected errors.

    - 0 errors: no-op (returns normally)
    - 1 error: raises the original error (preserves except clauses)
    - 2+ errors: raises MultipleValidationErrors wrapping the report
    """
    count = len(report.errors)
    if count == 0:
        return
    if count == 1:
        raise report.errors[0]
    raise MultipleValidationErrors(
        message=f'aborting due to {count} previous errors',
        report=report,
    )


# =============================================================================
# Helper Functions for Creating Errors
# =============================================================================


def _find_user_frame() -> Any | None:
    """Find the first frame outside of courier internals."""
    frame = inspect.currentframe()
    while frame is not None:
        filename = frame.f_code.co_filename

        # Skip synthetic frames (e.g., <string>, <frozen ...>)
        if filename.startswith('<'):
            frame = frame.f_back
            continue

        if not filename.startswith(_COURIER_PKG_DIR) and '/site-packages/' not in filename:
            return frame

        frame = frame.f_back

    return None


def unsupported_target(
    message: str,
    *,
    code: ErrorCode,
    fn: Callable[..., Any] | None = None,
    notes: list[str] | None = None,
    help_text: str | None = None,
) -> UnsupportedTarget:
    """Create an UnsupportedTarget pointing at the target's definition when known."""
    location = SourceLocation.from_function(fn) if fn is not None else None
    return UnsupportedTarget(
        message=message,
        code=code,
        location=location,
        notes=notes or [],
        help_text=help_text,
    )


def invalid_envelope(
    message: str,
    *,
    code: ErrorCode,
    notes: list[str] | None = None,
) -> InvalidEnvelope:
    """Create an InvalidEnvelope with the poison-message help text."""
    return InvalidEnvelope(
        message=message,
        code=code,
        notes=notes or [],
        help_text=(
            'this message cannot succeed on redelivery\n'
            'route it to a dead-letter destination instead of retrying'
        ),
    )
