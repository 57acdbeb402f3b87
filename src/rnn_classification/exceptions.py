from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping


class AppError(Exception):
    """Base class for every error raised by rnn_classification.

    Attributes
    ----------
    message:
        Human-readable error message.
    code:
        Stable, machine-friendly identifier (e.g. "input_file_open_error").
    cause:
        Optional underlying exception that triggered this error.
    context:
        Small dictionary with extra debugging information (paths, shapes,
        option strings, ...).
    location:
        Optional dotted path of the function that raised the error
        (e.g. "rnn_classification.data.loading.read_event_trees").
    method:
        Name of the booked method (e.g. "TMVA_LSTM") the error belongs to,
        when it happened while that method was trained or tested.
    """

    default_code: str = "app_error"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        cause: BaseException | None = None,
        context: Mapping[str, Any] | None = None,
        location: str | None = None,
        method: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code: str = code or self.default_code
        self.cause = cause
        self.context: dict[str, Any] = dict(context or {})
        self.location = location
        self.method = method

        if cause is not None:
            self.__cause__ = cause  # type: ignore[assignment]

    def __str__(self) -> str:
        head = f"[{self.code}]"
        if self.method:
            head += f" {self.method}:"
        parts: list[str] = [f"{head} {self.message}"]

        if self.location:
            parts.append(f"(at {self.location})")

        if self.cause is not None:
            parts.append(f"(cause: {self.cause!r})")

        return " ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}("
            f"code={self.code!r}, "
            f"message={self.message!r}, "
            f"method={self.method!r}, "
            f"location={self.location!r}"
            ")"
        )

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable representation of the error."""
        data: dict[str, Any] = {
            "type": type(self).__name__,
            "code": self.code,
            "message": self.message,
        }

        if self.method:
            data["method"] = self.method

        if self.location:
            data["location"] = self.location

        if self.context:
            data["context"] = dict(self.context)

        if self.cause is not None:
            data["cause"] = {
                "type": type(self.cause).__name__,
                "repr": repr(self.cause),
            }

        return data

    def add_context(self, **extra: Any) -> AppError:
        """Add or update context fields and return self."""
        self.context.update(extra)
        return self

    def for_method(self, name: str) -> AppError:
        """Attribute the error to booked method ``name`` unless it already names one.

        The factory calls this when an error escapes a method's training
        or testing, so the CLI can tell which of several booked methods failed.
        """
        if not self.method:
            self.method = name
        return self

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        *,
        message: str | None = None,
        code: str | None = None,
        context: Mapping[str, Any] | None = None,
        location: str | None = None,
        method: str | None = None,
    ) -> AppError:
        """Wrap an arbitrary exception into an AppError (or subclass).

        Examples
        --------
        >>> try:
        ...     estimator.fit(x, y)
        ... except ValueError as exc:
        ...     raise ModelError.from_exception(
        ...         exc,
        ...         code="method_train_failed",
        ...         method="BDTG",
        ...     ) from exc
        """
        base_message = message or str(exc) or cls.__name__
        return cls(
            base_message,
            code=code,
            cause=exc,
            context=context,
            location=location,
            method=method,
        )


class ConfigError(AppError):
    """Invalid configuration: YAML files, option strings, bookings."""

    default_code = "config_error"


class OptionError(ConfigError):
    """A malformed option string (factory, split, method or training strategy)."""

    default_code = "option_error"


class DataError(AppError):
    """Dataset generation, loading, shape validation or splitting errors."""

    default_code = "data_error"


class InputFileError(DataError):
    """The time-series input file could not be opened or read.

    This is the failure a classification run checks for explicitly: the
    message always reads "Error opening input file <path>" and the CLI
    turns it into exit code 1.
    """

    default_code = "input_file_open_error"

    def __init__(
        self,
        path: str | Path,
        *,
        reason: str = "file does not exist",
        code: str | None = None,
        cause: BaseException | None = None,
        location: str | None = None,
    ) -> None:
        self.path = Path(path)
        self.reason = reason
        super().__init__(
            f"Error opening input file {self.path}",
            code=code,
            cause=cause,
            context={"path": str(self.path), "reason": reason},
            location=location,
        )


class ModelError(AppError):
    """Errors while building or running a booked model."""

    default_code = "model_error"


class TrainingError(ModelError):
    """Errors raised inside training / evaluation loops.

    Use this for:
    - invalid training schedules (epochs, repetitions, ...),
    - empty loaders or batch weights that sum to zero,
    - non-finite losses.
    """

    default_code = "training_error"


class PipelineError(AppError):
    """High-level orchestration errors (missing optional packages, run setup)."""

    default_code = "pipeline_error"
