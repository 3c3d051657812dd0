"""Data carried between stage invocations of a single run."""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from clipinsight.jobs.states import PipelineStage
from clipinsight.pipeline.errors import ErrorCode, classify_error_text


@dataclass
class StepResult:
    success: bool
    stage: PipelineStage
    duration_ms: int = 0
    error_code: Optional[ErrorCode] = None
    error_message: Optional[str] = None
    outputs: Optional[Dict[str, Any]] = None
    metrics: Optional[Dict[str, Any]] = None

    @classmethod
    def ok(cls, stage: PipelineStage, duration_ms: int = 0, outputs=None, metrics=None) -> "StepResult":
        return cls(True, PipelineStage(stage), duration_ms, outputs=outputs, metrics=metrics)

    @classmethod
    def failed(cls, stage: PipelineStage, error_code: ErrorCode, error_message: Optional[str] = None,
               duration_ms: int = 0, metrics=None) -> "StepResult":
        return cls(False, PipelineStage(stage), duration_ms, error_code=error_code,
                   error_message=error_message, metrics=metrics)

    @classmethod
    def from_exception(cls, stage: PipelineStage, exc: BaseException, fallback: ErrorCode,
                       duration_ms: int = 0) -> "StepResult":
        """Failure result for an upstream call that raised, classified from its message.

        Stage handlers wrap their third-party calls with this so quota, auth and
        availability errors surface as the API codes instead of ``fallback``.
        """
        message = str(exc) or exc.__class__.__name__
        return cls.failed(stage, classify_error_text(message, fallback), message, duration_ms)


@dataclass
class PipelineContext:
    """Per-run working state, owned by the orchestrator and dropped when the run ends."""

    job: Any
    run: Any
    contract: Dict[str, Any]
    workspace_id: Optional[str] = None
    user_id: Optional[str] = None
    media_asset_id: Optional[str] = None
    transcript_id: Optional[str] = None
    insight_pack_id: Optional[str] = None
    artifact_ids: Dict[str, Any] = field(default_factory=dict)
    extras: Dict[str, Any] = field(default_factory=dict)
    total_tokens: int = 0
    total_cost_usd: float = 0.0

    _OUTPUT_FIELDS = ("media_asset_id", "transcript_id", "insight_pack_id")

    def merge_outputs(self, outputs: Optional[Dict[str, Any]]) -> None:
        for key, value in (outputs or {}).items():
            if key in self._OUTPUT_FIELDS:
                setattr(self, key, value)
            elif key == "artifact_ids" and isinstance(value, dict):
                self.artifact_ids = {**self.artifact_ids, **value}
            else:
                self.extras[key] = value

    def add_usage(self, metrics: Optional[Dict[str, Any]]):
        """Accumulate ``tokens_used``/``cost_usd`` from stage metrics; returns the deltas."""
        tokens, cost = usage_from_metrics(metrics)
        self.total_tokens += tokens
        self.total_cost_usd += cost
        return tokens, cost


def usage_from_metrics(metrics: Optional[Dict[str, Any]]):
    """``(tokens, cost_usd)`` reported by a stage; ValueError/TypeError when they are not numbers."""
    metrics = metrics or {}
    return int(metrics.get("tokens_used") or 0), float(metrics.get("cost_usd") or 0.0)


StageHandler = Callable[[PipelineContext], Union[StepResult, Awaitable[StepResult]]]
