"""
Common utility functions for the netmap patch manager.
"""

import logging
import re
import shutil
import subprocess
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple

from rich.console import Console
from rich.logging import RichHandler


# Rich console for output
console = Console()


def setup_logging(
    name: str = "nmpatches",
    level: int = logging.INFO,
    log_file: Optional[Path] = None,
) -> logging.Logger:
    """Set up logging with Rich handler."""
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Clear existing handlers
    logger.handlers.clear()

    # Console handler with Rich
    console_handler = RichHandler(
        console=console,
        show_time=True,
        show_path=False,
        rich_tracebacks=True,
    )
    console_handler.setLevel(level)
    logger.addHandler(console_handler)

    # File handler if specified
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        logger.addHandler(file_handler)

    return logger


# Default logger
logger = setup_logging()


def run_command(
    cmd: Sequence[str],
    cwd: Optional[Path] = None,
    timeout: Optional[int] = None,
    capture_output: bool = True,
    check: bool = False,
) -> Tuple[int, str, str]:
    """
    Run a command.

    Args:
        cmd: Command and arguments as list
        cwd: Working directory
        timeout: Command timeout in seconds, None waits forever
        capture_output: Capture stdout and stderr
        check: Raise exception on non-zero exit

    Returns:
        Tuple of (return_code, stdout, stderr)
    """
    try:
        result = subprocess.run(
            list(cmd),
            cwd=cwd,
            timeout=timeout,
            capture_output=capture_output,
            text=True,
            errors="replace",
            check=check,
        )
        return result.returncode, result.stdout or "", result.stderr or ""
    except subprocess.TimeoutExpired:
        logger.error(f"Command timed out after {timeout}s: {' '.join(cmd)}")
        return -1, "", f"Command timed out after {timeout}s"
    except subprocess.CalledProcessError as e:
        return e.returncode, e.stdout or "", e.stderr or ""
    except OSError as e:
        logger.error(f"Command failed: {e}")
        return -1, "", str(e)


def safe_remove_dir(dir_path: Path) -> None:
    """Safely remove a directory and its contents."""
    if dir_path.exists() and dir_path.is_dir():
        try:
            shutil.rmtree(dir_path)
        except OSError as e:
            logger.warning(f"Failed to remove directory {dir_path}: {e}")


@contextmanager
def scratch_dir(
    prefix: str,
    root: Optional[Path] = None,
    keep: bool = False,
) -> Iterator[Path]:
    """
    Create a temporary directory that is removed on exit.

    Args:
        prefix: Directory name prefix
        root: Parent directory (system default when None)
        keep: Leave the directory in place for debugging

    Yields:
        Path of the new directory
    """
    if root is not None:
        root.mkdir(parents=True, exist_ok=True)
    path = Path(tempfile.mkdtemp(prefix=prefix, dir=root))
    try:
        yield path
    finally:
        if keep:
            logger.info(f"Keeping temporary directory {path}")
        else:
            safe_remove_dir(path)


def copy_tree(src: Path, dest: Path) -> Path:
    """Copy a directory tree, preserving symlinks."""
    shutil.copytree(src, dest, symlinks=True)
    return dest


def apply_patch(
    content: bytes,
    target_dir: Path,
    ignore_whitespace: bool = True,
    strip: int = 1,
) -> Tuple[bool, str]:
    """
    Apply a unified diff to a directory with GNU patch.

    Args:
        content: Patch content
        target_dir: Directory the patch paths are relative to
        ignore_whitespace: Match context loosely on whitespace (``-l``)
        strip: Leading path components to strip

    Returns:
        Tuple of (applied, patch output)
    """
    with tempfile.NamedTemporaryFile(prefix="nmpatch-", suffix=".diff", delete=False) as f:
        f.write(content)
        patch_file = Path(f.name)

    cmd = ["patch", f"-p{strip}", "-f", "-s", "--no-backup-if-mismatch", "-i", str(patch_file)]
    if ignore_whitespace:
        cmd.insert(1, "-l")

    try:
        returncode, stdout, stderr = run_command(cmd, cwd=target_dir)
    finally:
        patch_file.unlink()

    output = (stdout + stderr).strip()
    if returncode != 0:
        logger.debug(f"patch failed in {target_dir}: {output}")
        return False, output
    return True, output


def normalize_line(line: str) -> str:
    """Drop all whitespace from a line."""
    return re.sub(r"\s+", "", line)


def _read_normalized(path: Path) -> List[str]:
    text = path.read_bytes().decode("latin-1")
    # Only newline ends a line; form feeds and the like are whitespace
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return [normalize_line(line) for line in lines]


def _list_files(root: Path) -> List[str]:
    return sorted(
        p.relative_to(root).as_posix()
        for p in root.rglob("*")
        if p.is_file()
    )


def diff_trees(left: Path, right: Path) -> List[str]:
    """
    Compare two directory trees, ignoring whitespace inside lines.

    Whitespace differences within a line are ignored, as with ``diff -rw``;
    added or removed lines (even blank ones) still count.

    Args:
        left: First tree
        right: Second tree

    Returns:
        Relative paths that differ, empty when the trees are equivalent
    """
    left_files = _list_files(left)
    right_files = _list_files(right)

    differing = sorted(set(left_files) ^ set(right_files))
    for rel in sorted(set(left_files) & set(right_files)):
        if _read_normalized(left / rel) != _read_normalized(right / rel):
            differing.append(rel)

    return differing


def format_duration(seconds: int) -> str:
    """Format duration in seconds to human-readable string."""
    if seconds < 60:
        return f"{seconds}s"
    elif seconds < 3600:
        minutes = seconds // 60
        secs = seconds % 60
        return f"{minutes}m {secs}s"
    else:
        hours = seconds // 3600
        minutes = (seconds % 3600) // 60
        return f"{hours}h {minutes}m"
