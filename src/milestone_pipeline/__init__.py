"""Provide the public `milestone_pipeline` package exports."""

from __future__ import annotations

from .config import PipelineConfig, load_pipeline_config
from .cycle import run_iteration_cycle
from .fsm import transition
from .models import Finished, Halted, PipelineState, ResumePoint
from .state import find_resume_point, load_state, save_state
from .walker import Walker

__all__ = [
    "Finished",
    "Halted",
    "PipelineConfig",
    "PipelineState",
    "ResumePoint",
    "Walker",
    "find_resume_point",
    "load_pipeline_config",
    "load_state",
    "run_iteration_cycle",
    "save_state",
    "transition",
]
