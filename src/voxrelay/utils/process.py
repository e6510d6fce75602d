from __future__ import annotations

import os
import signal
from contextlib import asynccontextmanager

import anyio
from anyio.abc import Process

from ..logging import get_logger

logger = get_logger(__name__)


async def wait_for_process(proc: Process, timeout: float) -> bool:
    with anyio.move_on_after(timeout) as scope:
        await proc.wait()
    return scope.cancel_called


def terminate_process(proc: Process) -> None:
    if proc.returncode is not None:
        return
    if os.name == "posix" and proc.pid is not None:
        try:
            os.killpg(proc.pid, signal.SIGTERM)
            return
        except ProcessLookupError:
            return
        except Exception as e:
            logger.debug("subprocess.terminate_group_failed", error=str(e))
    try:
        proc.terminate()
    except ProcessLookupError:
        return


def kill_process(proc: Process) -> None:
    if proc.returncode is not None:
        return
    if os.name == "posix" and proc.pid is not None:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
            return
        except ProcessLookupError:
            return
        except Exception as e:
            logger.debug("subprocess.kill_group_failed", error=str(e))
    try:
        proc.kill()
    except ProcessLookupError:
        return


@asynccontextmanager
async def manage_subprocess(*args, grace_s: float = 2.0, **kwargs):
    """Ensure subprocesses receive SIGTERM, then SIGKILL after a grace period."""
    if os.name == "posix":
        kwargs.setdefault("start_new_session", True)
    proc = await anyio.open_process(args, **kwargs)
    try:
        yield proc
    finally:
        if proc.returncode is None:
            with anyio.CancelScope(shield=True):
                terminate_process(proc)
                timed_out = await wait_for_process(proc, timeout=grace_s)
                if timed_out:
                    kill_process(proc)
                    await proc.wait()
