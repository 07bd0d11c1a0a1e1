"""Colored pipeline logger — ANSI-colored stage trace for a question → SQL turn.

One conversational turn (classify → extract → expand → search →
compose/generate → validate → execute) and one discovery batch each log
as a block of color-coded stage lines, so a turn can be followed in the
terminal without a tracing backend.

Color scheme:
    🔵 Blue    — Intent classification
    🟡 Yellow  — Structured intent / concept expansion
    🟣 Magenta — Semantic search / schema discovery
    🟠 Cyan    — Composition / SQL generation
    🟢 Green   — Validation / completion
    🔴 Red     — Errors
    ⚪ Gray    — Details / timing
"""

import logging
import time
from contextlib import contextmanager
from typing import Any, NamedTuple


# ── ANSI Color Codes ─────────────────────────────────────────────────

class _Colors:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    MAGENTA = "\033[95m"
    CYAN = "\033[96m"
    WHITE = "\033[97m"
    GRAY = "\033[90m"


class Stage(NamedTuple):
    label: str
    color: str
    icon: str


# ── Pipeline Stage Definitions ───────────────────────────────────────

class PipelineStage:
    """Stages of a turn and of non-form discovery."""

    CLASSIFY = Stage("CLASSIFY", _Colors.BLUE, "🏷️")
    EXTRACT = Stage("EXTRACT", _Colors.YELLOW, "🧩")
    EXPAND = Stage("EXPAND", _Colors.YELLOW, "🔤")
    SEARCH = Stage("SEARCH", _Colors.MAGENTA, "🔎")
    COMPOSE = Stage("COMPOSE", _Colors.CYAN, "🧱")
    GENERATE = Stage("GENERATE", _Colors.CYAN, "🤖")
    VALIDATE = Stage("VALIDATE", _Colors.GREEN, "🛡️")
    EXECUTE = Stage("EXECUTE", _Colors.WHITE, "⚙️")
    DISCOVERY = Stage("DISCOVERY", _Colors.MAGENTA, "🗂️")
    ERROR = Stage("ERROR", _Colors.RED, "❌")
    COMPLETE = Stage("COMPLETE", _Colors.GREEN, "✅")


def _paint(color: str, text: str) -> str:
    return f"{color}{text}{_Colors.RESET}"


def _key_values(values: dict[str, Any], sep: str = "=") -> str:
    return " | ".join(f"{k}{sep}{v}" for k, v in values.items())


# ── PipelineLogger ───────────────────────────────────────────────────

class PipelineLogger:
    """Color-coded stage logger bound to one component name.

    Usage:
        plog = PipelineLogger("QueryPipeline")
        with plog.timed_step(PipelineStage.CLASSIFY, "Classifying intent"):
            classification = await classifier.classify(question, customer_id)
        plog.detail("pattern match", intent="top_k", confidence=0.9)
    """

    def __init__(self, component_name: str):
        self._logger = logging.getLogger(component_name)

    def _stage_line(
        self, stage: Stage, body: str, *, bold: bool = False, details: dict[str, Any] | None = None
    ) -> str:
        prefix = f"{stage.icon} [{stage.label}]"
        if bold:
            prefix = f"{_Colors.BOLD}{prefix}"
        line = f"{_paint(stage.color, prefix)} {body}"
        if details:
            line += " " + _paint(_Colors.GRAY, f"({_key_values(details)})")
        return line

    def step_start(self, stage: Stage, message: str, **kwargs: Any) -> None:
        self._logger.info(
            self._stage_line(stage, _paint(stage.color, message), bold=True, details=kwargs)
        )

    def step_complete(self, stage: Stage, message: str, **kwargs: Any) -> None:
        self._logger.info(
            self._stage_line(stage, _paint(_Colors.GREEN, f"✓ {message}"), details=kwargs)
        )

    def step_warning(self, stage: Stage, message: str) -> None:
        """A stage degraded but the turn continues."""
        self._logger.warning(self._stage_line(stage, _paint(_Colors.YELLOW, f"⚠ {message}")))

    def step_error(self, stage: Stage, message: str, error: BaseException | None = None) -> None:
        error_stage = PipelineStage.ERROR
        body = _paint(_Colors.RED, message)
        if error is not None:
            body += " " + _paint(_Colors.DIM, f"→ {type(error).__name__}: {error}")
        self._logger.error(
            self._stage_line(
                Stage(stage.label, error_stage.color, error_stage.icon), body, bold=True
            )
        )

    def detail(self, message: str, **kwargs: Any) -> None:
        line = "   " + _paint(_Colors.GRAY, f"├─ {message}")
        if kwargs:
            line += " " + _paint(_Colors.DIM, f"({_key_values(kwargs)})")
        self._logger.info(line)

    def separator(self, title: str = "") -> None:
        if title:
            rule = f"{'─' * 10} {title} {'─' * max(50 - len(title), 0)}"
        else:
            rule = "─" * 60
        self._logger.info(_paint(_Colors.GRAY, rule))

    def stats(self, **kwargs: Any) -> None:
        self._logger.info("   " + _paint(_Colors.GRAY, f"📈 {_key_values(kwargs, ': ')}"))

    @contextmanager
    def timed_step(self, stage: Stage, message: str, **kwargs: Any):
        """Log start and end of a stage with elapsed time; errors are logged and re-raised."""
        self.step_start(stage, message, **kwargs)
        start = time.perf_counter()
        try:
            yield
        except Exception as e:
            self.step_error(
                stage, f"{message} failed after {time.perf_counter() - start:.2f}s", error=e
            )
            raise
        self.step_complete(stage, f"{message} ({time.perf_counter() - start:.2f}s)")
