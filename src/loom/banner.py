"""Startup banner — mode-aware status output on stderr.

Detects ``NO_COLOR`` / ``TERM`` for safe fallback.
"""

from __future__ import annotations

import os
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from loom.config import LoomConfig


# ---------------------------------------------------------------------------
# ANSI helpers: respect NO_COLOR (https://no-color.org)
# ---------------------------------------------------------------------------

def _supports_color() -> bool:
    """Return True if the terminal supports ANSI colors."""
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("TERM") == "dumb":
        return False
    return hasattr(sys.stderr, "isatty") and sys.stderr.isatty()


_COLOR = _supports_color()

_RESET = "\033[0m" if _COLOR else ""
_BOLD = "\033[1m" if _COLOR else ""
_DIM = "\033[2m" if _COLOR else ""
_CYAN = "\033[36m" if _COLOR else ""
_GREEN = "\033[32m" if _COLOR else ""
_YELLOW = "\033[33m" if _COLOR else ""

_MODE_STYLES: dict[str, tuple[str, str]] = {
    "watch": (_GREEN, "watch"),
    "serve": (_CYAN, "serve"),
}


def _mode_badge(mode: str) -> str:
    color, label = _MODE_STYLES.get(mode, (_DIM, mode))
    return f"{color}[{label}]{_RESET}"


def _mask(secret: str | None) -> str:
    if not secret:
        return "not set"
    return f"{secret[:4]}..." if len(secret) > 8 else "set"


def banner_lines(config: LoomConfig, mode: str, *, warnings: list[str] | None = None) -> list[str]:
    """Build the banner text for *mode* (``"watch"`` or ``"serve"``)."""
    from loom import __version__

    lines: list[str] = [
        "",
        f"  {_BOLD}Loom{_RESET} {_DIM}v{__version__}{_RESET}  {_mode_badge(mode)}",
        f"  {_DIM}{'─' * 43}{_RESET}",
        f"  {_DIM}├─{_RESET} repository: {_DIM}{config.api_base}{_RESET}",
        f"  {_DIM}├─{_RESET} site: {config.site_id or 'not set'}",
    ]

    if config.polling_enabled:
        lines.append(
            f"  {_DIM}├─{_RESET} {_GREEN}polling{_RESET} "
            f"every {config.poll_interval:g}s {_DIM}(stops after {config.max_failures} failures){_RESET}"
        )
    else:
        lines.append(f"  {_DIM}├─{_RESET} polling off")

    if mode == "serve":
        lines.append(f"  {_DIM}├─{_RESET} webhook: POST {config.webhook_path}")
        lines.append(f"  {_DIM}└─{_RESET} secret: {_mask(config.webhook_secret)}")
        lines.append("")
        lines.append(f"  {_BOLD}{_CYAN}http://{config.host}:{config.port}{_RESET}")
    else:
        lines.append(f"  {_DIM}└─{_RESET} {_DIM}Watching for content changes...{_RESET}")

    if warnings:
        lines.append("")
        lines.extend(f"  {_YELLOW}!{_RESET} {w}" for w in warnings)

    lines.append("")
    return lines


def print_banner(config: LoomConfig, mode: str, *, warnings: list[str] | None = None) -> None:
    """Print the Loom startup banner to stderr."""
    print("\n".join(banner_lines(config, mode, warnings=warnings)), file=sys.stderr)
