"""Command line for the supervised agent CLI (``cursor-agent`` by default).

The agent runs headless with stream-json output so the monitor can count
tokens::

    cursor-agent -p --force --output-format stream-json --model M [--resume=ID] [ARGS...] PROMPT
"""

from __future__ import annotations

from ralph_loop.config import LoopConfig
from ralph_loop.runner_common import resolve_binary


def build_agent_command(
    config: LoopConfig,
    prompt: str,
    resume_token: str | None = None,
) -> list[str]:
    """Return argv for one agent invocation.

    ``config.agent_args`` go right before the prompt; a model flag among them
    replaces the configured model.
    """
    extra_args = list(config.agent_args)
    cmd = [
        resolve_binary(config.agent_binary),
        "-p",
        "--force",
        "--output-format",
        "stream-json",
    ]

    has_model_override = False
    for arg in extra_args:
        normalized = (arg or "").strip().lower()
        if normalized in {"--model", "-m"} or normalized.startswith("--model="):
            has_model_override = True
            break
    if config.model and not has_model_override:
        cmd.extend(["--model", config.model])

    token = (resume_token or "").strip()
    if token:
        cmd.append(f"--resume={token}")

    cmd.extend(extra_args)
    cmd.append(prompt)
    return cmd
