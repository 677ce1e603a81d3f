"""Run Context Management.

Binds the run ID, chain run number, and current optimizer phase to every
log entry through contextvars.
"""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterator


# Context variables for run-scoped data
_run_id_var: ContextVar[str] = ContextVar("run_id", default="")
_chain_run_var: ContextVar[int] = ContextVar("chain_run", default=0)
_phase_var: ContextVar[str] = ContextVar("phase", default="")
_extra_context_var: ContextVar[dict] = ContextVar("extra_context", default={})


def generate_run_id() -> str:
    """Generate a short unique run ID."""
    return uuid.uuid4().hex[:12]


def get_run_id() -> str:
    """Get the current run ID from context."""
    return _run_id_var.get()


def get_chain_run() -> int:
    """Get the current chain run number (0 outside a chain)."""
    return _chain_run_var.get()


def get_phase() -> str:
    """Get the current optimizer phase from context."""
    return _phase_var.get()


def get_context_dict() -> dict[str, Any]:
    """Get all context variables as a dictionary for log binding."""
    ctx: dict[str, Any] = {}
    run_id = _run_id_var.get()
    if run_id:
        ctx["run_id"] = run_id
    chain_run = _chain_run_var.get()
    if chain_run:
        ctx["chain_run"] = chain_run
    phase = _phase_var.get()
    if phase:
        ctx["phase"] = phase
    extra = _extra_context_var.get()
    if extra:
        ctx.update(extra)
    return ctx


@contextmanager
def phase_context(phase: str) -> Iterator[None]:
    """Tag log entries inside the block with *phase*."""
    token = _phase_var.set(phase)
    try:
        yield
    finally:
        _phase_var.reset(token)


@dataclass
class RunContext:
    """Context manager for run-scoped logging context.

    Example:
        with RunContext(chain_run=2):
            logger.info("starting")  # includes run_id, chain_run
    """

    run_id: str = ""
    chain_run: int = 0
    extra: dict[str, Any] = field(default_factory=dict)
    started_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    _tokens: list = field(default_factory=list, repr=False)

    def __post_init__(self):
        if not self.run_id:
            self.run_id = generate_run_id()

    def __enter__(self) -> "RunContext":
        self._tokens = [
            (_run_id_var, _run_id_var.set(self.run_id)),
            (_chain_run_var, _chain_run_var.set(self.chain_run)),
            (_extra_context_var, _extra_context_var.set(self.extra.copy())),
        ]
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()

    @property
    def elapsed_ms(self) -> float:
        """Milliseconds since context was created."""
        delta = datetime.now(timezone.utc) - self.started_at
        return delta.total_seconds() * 1000

    def bind(self, **kwargs: Any) -> None:
        """Add extra key-value pairs to the context."""
        current = _extra_context_var.get()
        updated = {**current, **kwargs}
        _extra_context_var.set(updated)
        self.extra.update(kwargs)
