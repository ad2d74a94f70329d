#!/usr/bin/env python3
"""Provide the CLI entrypoint and subcommands for the milestone pipeline.

Commands: bootstrap, init, run, status, reset, doctor.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Optional

from loguru import logger
from rich.console import Console
from rich.text import Text
from rich.tree import Tree

from .agents import build_invoker, check_prereqs
from .bootstrap import bootstrap_from_master_plan, init_from_tree
from .config import PipelineConfig, load_pipeline_config
from .constants import STATE_DIR_NAME
from .errors import PipelineError, StateError
from .git_ops import GitOperations
from .logging_utils import configure_logging
from .models import Finished, Halted, PipelineState
from .reset import reset_path
from .scaffold import Scaffolder
from .state import find_resume_point, load_state, progress_counts, save_state
from .templates import TemplateLoader
from .utils import sorted_ids
from .walker import Walker

USAGE = """\
usage: milestone-pipeline <command> [options]

commands:
  bootstrap [--force]               scaffold milestones from MASTER_PLAN.md and create state
  init [--force] [--pre-planned]    create state from an existing milestones/ tree
  run [--dry-run]                   advance the pipeline from the current state
  status [--json]                   show progress and the resume point
  reset <m[/p[/t]]> [--to STATE]    rewind a milestone, phase, or task
  doctor                            check prerequisites and config
"""


def _add_common_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--project-dir",
        type=Path,
        default=Path("."),
        help="Project directory (default: current directory)",
    )
    parser.add_argument(
        "--pipeline-dir",
        type=str,
        default=STATE_DIR_NAME,
        help=f"Pipeline state directory relative to the project (default: {STATE_DIR_NAME})",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Console log level (default: INFO)",
    )


def _build_bootstrap_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="milestone-pipeline bootstrap",
        description="Scaffold milestone seed specs from the master plan and create state.json",
    )
    _add_common_args(parser)
    parser.add_argument("--force", action="store_true", help="Overwrite an existing state file")
    return parser


def _build_init_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="milestone-pipeline init",
        description="Create state.json from an existing milestones/phases/tasks tree",
    )
    _add_common_args(parser)
    parser.add_argument("--force", action="store_true", help="Overwrite an existing state file")
    parser.add_argument(
        "--pre-planned",
        action="store_true",
        help="Copy spec.md to spec-locked.md and skip milestone/phase planning",
    )
    return parser


def _build_run_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="milestone-pipeline run",
        description="Advance the pipeline until a phase completes or all work is done",
    )
    _add_common_args(parser)
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Use mock agent responses and skip git; no subprocesses are spawned",
    )
    return parser


def _build_status_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="milestone-pipeline status",
        description="Show pipeline progress and the resume point",
    )
    _add_common_args(parser)
    parser.add_argument("--json", action="store_true", help="Print machine-readable JSON")
    return parser


def _build_reset_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="milestone-pipeline reset",
        description="Rewind a milestone, phase, or task and delete its artifacts",
    )
    _add_common_args(parser)
    parser.add_argument("path", help="Unit to reset: m01, m01/p01, or m01/p01/t01")
    parser.add_argument(
        "--to",
        default="pending",
        choices=["pending", "implementing"],
        help="Task target: 'implementing' keeps the locked plan (default: pending)",
    )
    return parser


def _build_doctor_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="milestone-pipeline doctor",
        description="Check agent binaries, config, and state (read-only)",
    )
    _add_common_args(parser)
    parser.add_argument("--json", action="store_true", help="Print machine-readable JSON")
    return parser


def _report_error(exc: Exception) -> None:
    sys.stderr.write(f"\nError: {exc}\n")
    remediation = getattr(exc, "remediation", None)
    if remediation:
        sys.stderr.write(f"{remediation}\n")
    sys.stderr.write("\n")


def _load_config(args: argparse.Namespace, *, dry_run: bool = False) -> PipelineConfig:
    return load_pipeline_config(args.project_dir, dry_run=dry_run, pipeline_dir=args.pipeline_dir)


def _write_new_state(config: PipelineConfig, state: PipelineState) -> None:
    config.tmp_path.mkdir(parents=True, exist_ok=True)
    save_state(config.state_path, state)


def _bootstrap_command(args: argparse.Namespace) -> int:
    try:
        config = _load_config(args)
        if config.state_path.exists() and not args.force:
            sys.stderr.write(f"\nState file already exists: {config.state_path}\nUse --force to overwrite.\n\n")
            return 1
        configure_logging(args.log_level, config.log_dir)
        missing = [label for label, _, path in check_prereqs(config, require_gh=False) if path is None]
        if missing:
            sys.stderr.write(f"\nMissing prerequisites: {', '.join(missing)}\n\n")
            return 1
        invoker = build_invoker(config)
        scaffolder = Scaffolder(config, invoker, TemplateLoader([config.templates_path]))
        state = bootstrap_from_master_plan(config, scaffolder)
        _write_new_state(config, state)
    except PipelineError as exc:
        _report_error(exc)
        return 1

    sys.stdout.write("\nBootstrap complete:\n")
    sys.stdout.write(f"  Milestones: {len(state.milestones)}\n")
    sys.stdout.write("  Phases:     (scaffolded after milestone specs lock)\n")
    sys.stdout.write("  Tasks:      (scaffolded after phase specs lock)\n")
    sys.stdout.write(f"  State:      {config.state_path}\n\n")
    return 0


def _init_command(args: argparse.Namespace) -> int:
    try:
        config = _load_config(args)
        if config.state_path.exists() and not args.force:
            sys.stderr.write(f"\nState file already exists: {config.state_path}\nUse --force to overwrite.\n\n")
            return 1
        state = init_from_tree(config, pre_planned=bool(args.pre_planned))
        _write_new_state(config, state)
    except PipelineError as exc:
        _report_error(exc)
        return 1

    counts = progress_counts(state)
    sys.stdout.write("\nInitialized pipeline state:\n")
    sys.stdout.write(f"  Milestones: {counts['milestones'][1]}\n")
    sys.stdout.write(f"  Phases:     {counts['phases'][1]}\n")
    sys.stdout.write(f"  Tasks:      {counts['tasks'][1]}\n")
    if args.pre_planned:
        sys.stdout.write("  Mode:       pre-planned (milestone and phase planning skipped)\n")
    sys.stdout.write(f"  State:      {config.state_path}\n\n")
    return 0


def _run_command(args: argparse.Namespace) -> int:
    dry_run = bool(args.dry_run)
    try:
        config = _load_config(args, dry_run=dry_run)
        configure_logging(args.log_level, config.log_dir)
        state = load_state(config.state_path)
        if not dry_run:
            missing = [label for label, _, path in check_prereqs(config) if path is None]
            if missing:
                sys.stderr.write(f"\nMissing prerequisites: {', '.join(missing)}\n\n")
                return 1

        invoker = build_invoker(config)
        templates = TemplateLoader([config.templates_path])
        walker = Walker(
            config,
            invoker,
            templates,
            Scaffolder(config, invoker, templates),
            GitOperations(config),
        )

        resume = find_resume_point(state)
        if resume is not None:
            logger.info("Resuming at {}{}", resume.label, " (dry run)" if dry_run else "")
        outcome = walker.walk(state)
    except PipelineError as exc:
        logger.error("Pipeline stopped: {}", exc)
        _report_error(exc)
        return 1

    if isinstance(outcome, Halted):
        if config.git.enabled:
            sys.stdout.write(f"\nPhase {outcome.label} completed - PR created, awaiting review.\n")
            sys.stdout.write("Merge the PR, then run again to continue.\n\n")
        else:
            sys.stdout.write(f"\nPhase {outcome.label} completed - awaiting review.\n")
            sys.stdout.write("Review the phase, then run again to continue.\n\n")
        return 0

    if not isinstance(outcome, Finished):
        raise TypeError(f"Unexpected walk outcome: {outcome!r}")
    done, total = progress_counts(state)["tasks"]
    sys.stdout.write("\nPipeline completed successfully.\n")
    sys.stdout.write(f"  Tasks: {done}/{total} completed\n\n")
    return 0


def _state_tree(state: PipelineState) -> Tree:
    tree = Tree(Text(f"Pipeline Status: {state.project}"))
    for milestone_id in sorted_ids(state.milestones):
        milestone = state.milestones[milestone_id]
        is_current = state.current_milestone == milestone_id
        tiebreak = ", tiebreaker: planning" if milestone.planning.tiebreaker_used else ""
        marker = " <-- current" if is_current else ""
        m_node = tree.add(Text(f"Milestone {milestone_id} [{milestone.status.value}{tiebreak}]{marker}"))

        for phase_id in sorted_ids(milestone.phases):
            phase = milestone.phases[phase_id]
            phase_current = is_current and milestone.current_phase == phase_id
            tiebreak = ", tiebreaker: planning" if phase.planning.tiebreaker_used else ""
            marker = " <-- current" if phase_current else ""
            p_node = m_node.add(Text(f"Phase {phase_id} [{phase.status.value}{tiebreak}]{marker}"))

            for task_id in sorted_ids(phase.tasks):
                task = phase.tasks[task_id]
                parts = []
                if task.planning.total_attempts > 0:
                    parts.append(f"plan: {task.planning.total_attempts} attempt(s)")
                if task.implementation.total_attempts > 0:
                    parts.append(f"impl: {task.implementation.total_attempts} attempt(s)")
                if task.planning.tiebreaker_used:
                    parts.append("tiebreaker: plan")
                if task.implementation.tiebreaker_used:
                    parts.append("tiebreaker: impl")
                detail = f" ({', '.join(parts)})" if parts else ""
                marker = " <-- current" if phase_current and phase.current_task == task_id else ""
                p_node.add(Text(f"Task {task_id} [{task.status.value}]{detail}{marker}"))
    return tree


def _status_command(args: argparse.Namespace) -> int:
    try:
        config = _load_config(args)
        state = load_state(config.state_path)
    except PipelineError as exc:
        _report_error(exc)
        return 1

    resume = find_resume_point(state)
    counts = progress_counts(state)
    if args.json:
        payload: dict[str, Any] = {
            "state": state.to_dict(),
            "resume_point": resume.label if resume else None,
            "progress": {key: {"completed": done, "total": total} for key, (done, total) in counts.items()},
        }
        sys.stdout.write(json.dumps(payload, indent=2, sort_keys=True) + "\n")
        return 0

    console = Console(highlight=False, soft_wrap=True)
    console.print(_state_tree(state))
    (m_done, m_total), (p_done, p_total), (t_done, t_total) = (
        counts["milestones"],
        counts["phases"],
        counts["tasks"],
    )
    sys.stdout.write(
        f"\nProgress: {m_done}/{m_total} milestones, {p_done}/{p_total} phases, {t_done}/{t_total} tasks\n"
    )
    sys.stdout.write(f"Resume point: {resume.label if resume else 'none (all work completed)'}\n")
    return 0


def _reset_command(args: argparse.Namespace) -> int:
    try:
        config = _load_config(args)
        state = load_state(config.state_path)
        summary, removed = reset_path(config, state, args.path, to=args.to)
        save_state(config.state_path, state)
    except (PipelineError, KeyError, ValueError) as exc:
        _report_error(exc)
        return 1

    for path in removed:
        logger.debug("Removed {}", path)
    sys.stdout.write(f"\n{summary}\n")
    if removed:
        sys.stdout.write(f"Removed {len(removed)} artifact(s).\n")
    sys.stdout.write("\n")
    return 0


def _doctor_command(args: argparse.Namespace) -> int:
    errors: list[str] = []
    warnings: list[str] = []
    checks: dict[str, Any] = {"project_dir": str(args.project_dir.resolve())}

    config: Optional[PipelineConfig] = None
    try:
        config = _load_config(args)
    except PipelineError as exc:
        errors.append(f"config: {exc}")

    if config is not None:
        binaries = {}
        for label, binary, path in check_prereqs(config):
            binaries[binary] = path
            if path is None:
                errors.append(f"{label} not found in PATH ({binary})")
        checks["binaries"] = binaries
        checks["master_plan"] = config.master_plan_path.exists()
        try:
            state = load_state(config.state_path)
        except StateError as exc:
            warnings.append(str(exc))
        else:
            resume = find_resume_point(state)
            checks["resume_point"] = resume.label if resume else None

    if args.json:
        payload = {"ok": not errors, "errors": errors, "warnings": warnings, "checks": checks}
        sys.stdout.write(json.dumps(payload, indent=2, sort_keys=True) + "\n")
        return 1 if errors else 0

    for key, value in checks.items():
        sys.stdout.write(f"{key}: {value}\n")
    for warning in warnings:
        sys.stdout.write(f"warning: {warning}\n")
    for error in errors:
        sys.stdout.write(f"error: {error}\n")
    sys.stdout.write("OK\n" if not errors else "FAILED\n")
    return 1 if errors else 0


_COMMANDS = {
    "bootstrap": (_build_bootstrap_parser, _bootstrap_command),
    "init": (_build_init_parser, _init_command),
    "run": (_build_run_parser, _run_command),
    "status": (_build_status_parser, _status_command),
    "reset": (_build_reset_parser, _reset_command),
    "doctor": (_build_doctor_parser, _doctor_command),
}


def main(argv: list[str] | None = None) -> None:
    """Run the `milestone-pipeline` CLI.

    Args:
        argv: Optional argument list (excluding the executable name). When omitted,
            uses `sys.argv[1:]`.

    Raises:
        SystemExit: Raised to return a process exit code for CLI subcommands.
    """
    argv = list(sys.argv[1:] if argv is None else argv)
    if not argv or argv[0] in {"-h", "--help"}:
        sys.stdout.write(USAGE)
        raise SystemExit(0)
    entry = _COMMANDS.get(argv[0])
    if entry is None:
        sys.stderr.write(f"Unknown command: {argv[0]}\n\n{USAGE}")
        raise SystemExit(2)
    build_parser, command = entry
    args = build_parser().parse_args(argv[1:])
    configure_logging(args.log_level)
    raise SystemExit(command(args))


if __name__ == "__main__":
    main()
