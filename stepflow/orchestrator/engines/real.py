"""Real engine: runs a step through ``codex exec --json``.

The prompt is written to the child's stdin. Stdout is a stream of JSON
events, one per line; each is appended to the step's event log (flushed per
line so a crash leaves a usable prefix), rendered, and its usage reported.
Stdout lines that are not JSON are passed to the renderer as plain output.
Stderr is drained concurrently so the child can never block on a full pipe.
"""

import asyncio
import json
import logging
import os
import signal
import sys
from typing import AsyncIterator, List, Optional, TextIO

from stepflow import prompts

from ..errors import EngineError
from ..ledger import UsageRecorder
from .base import EngineContext, Renderer, report_usage

logger = logging.getLogger(__name__)

DEFAULT_CODEX_BIN = "codex"

# Read stdout in chunks rather than readline(): asyncio's readline has a
# 64KB limit that a single large event line can exceed
CHUNK_SIZE = 1024 * 1024


def _is_unix() -> bool:
    """Check if running on Unix (Linux, macOS, etc.)."""
    return not sys.platform.startswith('win')


def _kill_process_tree(process: asyncio.subprocess.Process) -> None:
    """Kill the agent and its descendants (process group on Unix)."""
    if _is_unix() and process.pid is not None:
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            # Process group may already be gone
            pass
    else:
        try:
            process.kill()
        except ProcessLookupError:
            pass


def build_command(context: EngineContext) -> List[str]:
    """Build the codex command line for a step.

    Preset arguments from ``engines.codex.args`` come first; ``exec`` and
    ``--json`` are only added when the preset does not already contain them.
    A profile takes the place of an explicit model.
    """
    preset = context.config.engines.codex
    resolved = context.resolved

    cmd = [preset.bin or DEFAULT_CODEX_BIN, *preset.args]
    if "exec" not in preset.args:
        cmd.append("exec")

    if resolved.reasoning_effort:
        cmd.extend(["--config", f'model_reasoning_effort="{resolved.reasoning_effort}"'])
    if resolved.reasoning_summary:
        cmd.extend(["--config", f'reasoning_summary="{resolved.reasoning_summary}"'])

    if resolved.profile:
        cmd.extend(["--profile", resolved.profile])
    else:
        cmd.extend(["--model", resolved.model])

    if "--json" not in preset.args:
        cmd.append("--json")

    cmd.extend(["--output-last-message", str(context.result_path)])
    return cmd


async def _iter_lines(stream: asyncio.StreamReader) -> AsyncIterator[str]:
    """Yield decoded, stripped lines from a stream until EOF."""
    buffer = b""
    while True:
        chunk = await stream.read(CHUNK_SIZE)
        if not chunk:
            if buffer:
                yield buffer.decode('utf-8', errors='replace').strip()
            return

        buffer += chunk
        while b'\n' in buffer:
            line_bytes, buffer = buffer.split(b'\n', 1)
            yield line_bytes.decode('utf-8', errors='replace').strip()


async def _drain(stream: asyncio.StreamReader) -> bytes:
    chunks = []
    while True:
        chunk = await stream.read(CHUNK_SIZE)
        if not chunk:
            return b"".join(chunks)
        chunks.append(chunk)


async def _send_prompt(process: asyncio.subprocess.Process, prompt: str) -> None:
    try:
        process.stdin.write(prompt.encode('utf-8'))
        await process.stdin.drain()
        process.stdin.close()
        await process.stdin.wait_closed()
    except (BrokenPipeError, ConnectionResetError) as e:
        # The child exited before reading its prompt; its exit code says why
        logger.debug(f"Agent closed stdin early: {e}")


def _handle_line(line: str, event_log: TextIO, renderer: Renderer,
                 usage_recorder: Optional[UsageRecorder]) -> None:
    if not line:
        return
    if not line.startswith("{"):
        renderer.log_plain_line(line)
        return

    event_log.write(line + "\n")
    event_log.flush()

    try:
        event = json.loads(line)
    except json.JSONDecodeError as e:
        raise EngineError(f"failed to parse codex exec event: {e}: {line[:200]}") from e

    renderer.render_event(event)
    report_usage(event, usage_recorder)


class CodexEngine:
    """Runs each step as a ``codex exec`` subprocess."""

    async def run(self, context: EngineContext,
                  usage_recorder: Optional[UsageRecorder] = None) -> None:
        prompt = prompts.render_prompt(
            prompts.load_prompt(context.resolved.prompt_path, context.prompt_dir),
            context.config.vars,
        )
        cmd = build_command(context)

        try:
            context.memory_path.parent.mkdir(parents=True, exist_ok=True)
            context.result_path.parent.mkdir(parents=True, exist_ok=True)
            event_log = open(context.memory_path, "w", encoding="utf-8")
        except OSError as e:
            raise EngineError(f"failed to open event log {context.memory_path}: {e}") from e

        with event_log:
            logger.debug(f"Spawning: {' '.join(cmd)}")
            try:
                # New session so the whole process group can be killed on cancel
                process = await asyncio.create_subprocess_exec(
                    *cmd,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    start_new_session=_is_unix(),
                )
            except OSError as e:
                raise EngineError(f"failed to spawn {cmd[0]}: {e}") from e

            stderr_task = asyncio.create_task(_drain(process.stderr))
            try:
                await _send_prompt(process, prompt)
                async for line in _iter_lines(process.stdout):
                    _handle_line(line, event_log, context.renderer, usage_recorder)
                returncode = await process.wait()
                stderr_bytes = await stderr_task
            except BaseException:
                # Covers malformed events, cancellation and KeyboardInterrupt
                if process.returncode is None:
                    _kill_process_tree(process)
                    await process.wait()
                if not stderr_task.done():
                    stderr_task.cancel()
                raise

            stderr_text = stderr_bytes.decode('utf-8', errors='replace').strip()
            if stderr_text:
                event_log.write(f"STDERR: {stderr_text}\n")
                event_log.flush()
                context.renderer.log_plain_line(f"STDERR: {stderr_text}")

        if returncode != 0:
            if returncode is not None and returncode < 0:
                raise EngineError(f"codex exec exited with signal {-returncode}")
            raise EngineError(f"codex exec exited with code {returncode}")
