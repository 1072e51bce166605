"""Utility functions for readlist-vault."""
import os
import stat
import tempfile
from pathlib import Path


def _current_umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask


# mkstemp creates files as 0600; new vault files get the usual 0666 & ~umask
DEFAULT_FILE_MODE = 0o666 & ~_current_umask()


def atomic_write_text(path: Path, content: str, encoding: str = "utf-8") -> None:
    """Write ``content`` to ``path`` so readers see the old file or the new one.

    The text goes to a temporary file in the same directory which then
    replaces the target with ``os.replace``. On failure the temporary file
    is removed and the original file is left as it was. An existing file
    keeps its permission bits; a new one gets ``DEFAULT_FILE_MODE``.

    Args:
        path: Destination file. Its directory must already exist.
        content: Text to write.
        encoding: Text encoding (default UTF-8).

    Raises:
        OSError: If the directory is not writable or the replace fails.
    """
    path = Path(path)
    try:
        mode = stat.S_IMODE(os.stat(path).st_mode)
    except FileNotFoundError:
        mode = DEFAULT_FILE_MODE
    fd, temp_name = tempfile.mkstemp(
        dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "w", encoding=encoding, newline="") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(temp_name, mode)
        os.replace(temp_name, path)
    except BaseException:
        try:
            os.unlink(temp_name)
        except OSError:
            pass
        raise
