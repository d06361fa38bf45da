import logging
import shlex
import shutil
import subprocess
import uuid
from pathlib import Path
from typing import List, Optional

from romcurator.common.exceptions import DependencyError

logger = logging.getLogger(__name__)


def find_tool(name: str) -> Optional[Path]:
    """Find an executable in the system PATH or in the current directory.

    Args:
        name: The name of the executable to find.

    Returns:
        Optional[Path]: The path to the executable if found, None otherwise.
    """
    # Prefer system-wide installed executable
    p = shutil.which(name)
    if p:
        return Path(p).resolve()

    # Fallback to local files
    local = Path(f"./{name}").resolve()
    if local.exists():
        return local
    local_exe = Path(f"./{name}.exe").resolve()
    if local_exe.exists():
        return local_exe

    return None


def require_tool(name: str) -> Path:
    tool = find_tool(name)
    if tool is None:
        raise DependencyError(name)
    return tool


def run_cmd(
    cmd: List[str],
    *,
    timeout: Optional[float] = None,
    check: bool = False,
) -> subprocess.CompletedProcess:
    """Run a subprocess command with timeout and capture its output.

    Args:
        cmd: The command to run as a list of strings.
        timeout: Optional timeout in seconds.
        check: If True, raise CalledProcessError if return code is non-zero.

    Returns:
        subprocess.CompletedProcess
    """
    operation_id = uuid.uuid4().hex
    adapter = logging.LoggerAdapter(logger, {"operation_id": operation_id})
    adapter.debug("run_cmd start: %s", shlex.join(cmd))

    proc = subprocess.Popen(
        cmd,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        encoding="utf-8",
        errors="replace",
    )
    try:
        out, err = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        logger.warning("Command timeout (%s s): %s", timeout, shlex.join(cmd))
        proc.kill()
        out, err = proc.communicate()
        ex = subprocess.TimeoutExpired(cmd, timeout)
        ex.stdout = out
        ex.stderr = err
        raise ex
    res = subprocess.CompletedProcess(cmd, proc.returncode, stdout=out, stderr=err)

    if check and res.returncode != 0:
        raise subprocess.CalledProcessError(
            res.returncode, cmd, output=res.stdout, stderr=res.stderr
        )

    adapter.debug("run_cmd finished: rc=%s", res.returncode)
    return res
