"""Achievement logic expander — expansion and compression of condition logic."""

from __future__ import annotations

from pathlib import Path


def read_logic(path: str | Path) -> str:
    """Read a logic blob from a text file.

    Args:
        path: Path to the file holding ``_``-joined condition lines.

    Returns:
        The blob with surrounding whitespace and line breaks removed.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Logic file not found: {path}")

    text = path.read_text(encoding="utf-8")
    return "".join(part.strip() for part in text.splitlines())


def write_logic(text: str, path: str | Path) -> Path:
    """Write a logic blob to ``path``, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text + "\n", encoding="utf-8")
    return path
