"""CLI entrypoint for ralph-loop."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from ralph_loop.config import LoopConfig
from ralph_loop.controller import IterationController
from ralph_loop.errors import RalphError
from ralph_loop.preflight import PreflightReport, build_preflight_report
from ralph_loop.schemas import LoopResult, LoopStatus
from ralph_loop.session_log import SessionLog
from ralph_loop.state_dir import IterationCounter, StatePaths, ensure_state_dir
from ralph_loop.task_state import TaskStateStore

logger = logging.getLogger(__name__)

RULE = "=" * 68
THIN_RULE = "-" * 68

TASK_TEMPLATE_HINT = """\
Create a task file first:
  cat > RALPH_TASK.md << 'EOF'
  ---
  task: Your task description
  test_command: "npm test"
  ---
  # Task
  ## Success Criteria
  1. [ ] First thing to do
  2. [ ] Second thing to do
  EOF"""


def _load_dotenv(workspace: Path | None = None) -> None:
    """Load .env from the workspace or cwd, whichever has one first."""
    candidates = [workspace] if workspace is not None else []
    candidates.append(Path.cwd())
    for dir_ in candidates:
        env_file = dir_ / ".env"
        if env_file.is_file():
            load_dotenv(env_file)
            return
    load_dotenv()


def _build_parser() -> argparse.ArgumentParser:
    """Build and return the command-line parser for all sub-commands."""
    p = argparse.ArgumentParser(
        prog="ralph-loop",
        description="Run an autonomous coding agent against RALPH_TASK.md with context rotation.",
    )
    p.add_argument("-v", "--verbose", action="store_true", help="Enable verbose (DEBUG) logging.")
    sub = p.add_subparsers(dest="command")

    run_p = sub.add_parser("run", help="Run the iteration loop until the task is complete.")
    run_p.add_argument("workspace", nargs="?", default=".", help="Project root (default: cwd).")
    run_p.add_argument("-y", "--yes", action="store_true", help="Start without asking.")
    run_p.add_argument(
        "--max-iterations",
        type=int,
        default=None,
        help="Iteration cap for this run (default: RALPH_MAX_ITERATIONS or 20).",
    )
    run_p.add_argument("--model", default=None, help="Agent model (default: RALPH_MODEL).")
    run_p.add_argument(
        "--no-spinner", action="store_true", help="Disable the liveness indicator."
    )

    status_p = sub.add_parser("status", help="Show task progress and recent sessions.")
    status_p.add_argument("workspace", nargs="?", default=".", help="Project root (default: cwd).")
    status_p.add_argument("--limit", type=int, default=5, help="Session records to show.")

    init_p = sub.add_parser("init", help="Create the .ralph state directory.")
    init_p.add_argument("workspace", nargs="?", default=".", help="Project root (default: cwd).")

    doctor_p = sub.add_parser("doctor", help="Check that the workspace is ready to run.")
    doctor_p.add_argument("workspace", nargs="?", default=".", help="Project root (default: cwd).")
    doctor_p.add_argument("--json", action="store_true", help="Print the report as JSON.")
    return p


def main(argv: list[str] | None = None) -> int:
    """Parse arguments and dispatch to the requested sub-command."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        datefmt="%H:%M:%S",
    )
    if args.command is None:
        parser.print_help(sys.stderr)
        print("\nTip: run 'ralph-loop run [WORKSPACE]' to start the loop.", file=sys.stderr)
        return 1

    workspace = Path(args.workspace).expanduser().resolve()
    _load_dotenv(workspace)

    if args.command == "run":
        return _run_loop(args, workspace)
    if args.command == "status":
        return _show_status(args, workspace)
    if args.command == "init":
        return _init_workspace(workspace)
    if args.command == "doctor":
        return _run_doctor(args, workspace)
    parser.print_help(sys.stderr)
    return 1


# ---------------------------------------------------------------------------
# Sub-commands
# ---------------------------------------------------------------------------


def _resolve_config(args: argparse.Namespace) -> LoopConfig:
    spinner = False if getattr(args, "no_spinner", False) else None
    return LoopConfig.from_env(
        max_iterations=getattr(args, "max_iterations", None),
        model=getattr(args, "model", None),
        spinner=spinner,
    )


def _print_preflight_failures(report: PreflightReport) -> None:
    for message in report.failure_messages():
        print(f"[x] {message}", file=sys.stderr)
    if any(c.key == "task_file" and c.status == "fail" for c in report.checks):
        print("", file=sys.stderr)
        print(TASK_TEMPLATE_HINT, file=sys.stderr)


def _confirm_start() -> bool:
    try:
        reply = input("Start Ralph loop? [y/N] ").strip().lower()
    except EOFError:
        return False
    return reply in {"y", "yes"}


def _run_loop(args: argparse.Namespace, workspace: Path) -> int:
    try:
        config = _resolve_config(args)
    except ValueError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 1

    print(RULE)
    print("Ralph loop")
    print(RULE)
    report = build_preflight_report(config, workspace)
    if not report.ready:
        _print_preflight_failures(report)
        return 1

    paths = ensure_state_dir(workspace)
    store = TaskStateStore(workspace)
    progress = store.read_progress()

    print(f"Workspace: {workspace}")
    print(f"Task:      {store.path}")
    print("")
    print("Task summary:")
    print(THIN_RULE)
    print(store.summary())
    print(THIN_RULE)
    print(
        f"Progress: {progress.done} / {progress.total} criteria complete "
        f"({progress.remaining} remaining)"
    )
    print(f"Model:    {config.model}")
    print("")

    if progress.complete:
        print("Task already complete! All criteria are checked.")
        return 0

    print("This will run the agent locally to work on this task.")
    print(f"The agent is rotated when context fills up (~{config.rotate_threshold} tokens).")
    print(f"Watch activity with: tail -f {paths.activity}")
    if not args.yes and not _confirm_start():
        print("Aborted.")
        return 0

    controller = IterationController(config, workspace)
    try:
        result = controller.run()
    except RalphError as exc:
        print(f"Fatal: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 130

    _print_result(result, config, paths)
    return result.exit_code


def _print_result(result: LoopResult, config: LoopConfig, paths: StatePaths) -> None:
    print("")
    print(RULE)
    if result.status == LoopStatus.COMPLETE:
        print("RALPH COMPLETE! All criteria satisfied.")
        print(RULE)
        print(f"Completed in {result.iterations_run} iteration(s).")
        print("Check git log for detailed history.")
    elif result.status == LoopStatus.ALREADY_COMPLETE:
        print("Task already complete! All criteria are checked.")
        print(RULE)
    elif result.status == LoopStatus.GUTTER:
        print(f"Gutter detected. Check {paths.errors} for details.")
        print(RULE)
        print("The agent may be stuck. Consider:")
        print(f"  1. Check {paths.guardrails} for lessons")
        print("  2. Manually fix the blocking issue")
        print("  3. Re-run the loop")
    else:
        print(f"Max iterations ({config.max_iterations}) reached.")
        print(RULE)
        print(
            f"{result.progress.remaining} criteria remaining. "
            "Task may not be complete. Check progress manually."
        )


def _show_status(args: argparse.Namespace, workspace: Path) -> int:
    store = TaskStateStore(workspace)
    paths = StatePaths.for_workspace(workspace)
    progress = store.read_progress()
    if not progress.has_task:
        print(f"No {store.path.name} found in {workspace}")
        return 1
    print(f"Progress:  {progress.done} / {progress.total} criteria complete")
    print(f"Iteration: {IterationCounter(paths.iteration).get()}")
    front = store.front_matter()
    if front.get("task"):
        print(f"Task:      {front['task']}")
    if front.get("test_command"):
        print(f"Tests:     {front['test_command']}")
    records = SessionLog(paths).records()
    if records:
        print("")
        print("Recent sessions:")
        for record in records[-max(1, args.limit) :]:
            detail = f" ({record.detail})" if record.detail else ""
            print(f"  {record.timestamp}  #{record.iteration}  {record.event.value}{detail}")
    return 0


def _init_workspace(workspace: Path) -> int:
    if not workspace.is_dir():
        print(f"Not a directory: {workspace}", file=sys.stderr)
        return 1
    paths = ensure_state_dir(workspace)
    print(f"Initialized {paths.root}")
    if not TaskStateStore(workspace).exists():
        print("")
        print(TASK_TEMPLATE_HINT)
    return 0


def _run_doctor(args: argparse.Namespace, workspace: Path) -> int:
    try:
        config = _resolve_config(args)
    except ValueError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 1
    report = build_preflight_report(config, workspace)
    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        for check in report.checks:
            mark = "ok" if check.status == "pass" else "FAIL"
            print(f"[{mark:>4}] {check.label}: {check.detail}")
            if check.hint:
                print(f"       {check.hint}")
        summary = report.summary
        print(f"\n{summary['pass']} passed, {summary['fail']} failed")
    return 0 if report.ready else 1


if __name__ == "__main__":
    raise SystemExit(main())
