"""Resolve stage handlers from configuration.

Handlers live outside the core. ``config/pipeline.yaml`` names them as
``module:function`` (or ``module.function``) under ``stages.handlers``, keyed by
stage name.
"""

import importlib
from typing import Any, Dict, Mapping, Optional

from loguru import logger

from clipinsight.jobs.states import PIPELINE_STAGE_ORDER, PipelineStage
from .context import StageHandler


def import_handler(path: str) -> StageHandler:
    module_name, sep, attr = path.partition(":")
    if not sep:
        module_name, _, attr = path.rpartition(".")
    if not module_name or not attr:
        raise ValueError(f"Invalid handler path: {path!r}")
    module = importlib.import_module(module_name)
    handler = getattr(module, attr, None)
    if not callable(handler):
        raise ValueError(f"Handler {path!r} is not callable")
    return handler


def load_stage_handlers(cfg: Optional[Mapping[str, Any]]) -> Dict[PipelineStage, StageHandler]:
    """Import every configured handler; returns an empty mapping when none are configured.

    A partial configuration is an error: the orchestrator needs all seven stages.
    """
    paths = ((cfg or {}).get("stages") or {}).get("handlers") or {}
    if not paths:
        logger.warning("No stage handlers configured; runs will be created but not executed")
        return {}

    handlers = {PipelineStage(str(stage).upper()): import_handler(path) for stage, path in paths.items()}
    missing = [s.value for s in PIPELINE_STAGE_ORDER if s not in handlers]
    if missing:
        raise ValueError(f"stages.handlers is missing: {', '.join(missing)}")
    return handlers
