"""Loom configuration.

LoomConfig is the central configuration object, frozen after creation.
"""

from dataclasses import dataclass, field
from pathlib import Path

from loom._errors import ConfigError


@dataclass(frozen=True, slots=True)
class LoomConfig:
    """Configuration for a Loom process.

    Attributes:
        root: Project directory holding ``loom.yaml`` / ``loom.toml``.
              Always resolved to an absolute path on construction.
        api_key: Bearer token for the content repository API.
        site_id: Site whose content is polled.
        base_url: Base URL of the content repository API.
        poll: Allow the development change detector to run.
        poll_interval: Seconds between poll cycles (no backoff on success).
        fetch_timeout: Seconds before a snapshot fetch is abandoned.
        max_failures: Consecutive failed polls before the detector stops.
        debounce_delay: Seconds an edit waits before it is written.
        webhook_secret: Shared HMAC secret for inbound webhook signatures.
        require_signature: Reject unsigned requests when a secret is set.
        webhook_path: URL path of the webhook endpoint in ``serve`` mode.
        host: Bind address for ``serve`` mode.
        port: Bind port for ``serve`` mode.

    """

    root: Path = field(default_factory=Path.cwd)
    api_key: str | None = None
    site_id: str | None = None
    base_url: str = "http://localhost:3000"
    poll: bool = True
    poll_interval: float = 2.0
    fetch_timeout: float = 10.0
    max_failures: int = 3
    debounce_delay: float = 1.0
    webhook_secret: str | None = None
    require_signature: bool = False
    webhook_path: str = "/api/webhooks/loom"
    host: str = "127.0.0.1"
    port: int = 3000

    def __post_init__(self) -> None:
        if not self.root.is_absolute():
            object.__setattr__(self, "root", self.root.resolve())
        if self.poll_interval <= 0:
            msg = f"poll_interval must be positive, got {self.poll_interval}"
            raise ConfigError(msg)
        if self.fetch_timeout <= 0:
            msg = f"fetch_timeout must be positive, got {self.fetch_timeout}"
            raise ConfigError(msg)
        if self.max_failures < 1:
            msg = f"max_failures must be at least 1, got {self.max_failures}"
            raise ConfigError(msg)
        if self.debounce_delay < 0:
            msg = f"debounce_delay must not be negative, got {self.debounce_delay}"
            raise ConfigError(msg)

    @property
    def polling_enabled(self) -> bool:
        """Whether the change detector may start (polling on, credentials present)."""
        return self.poll and bool(self.api_key) and bool(self.site_id)

    @property
    def api_base(self) -> str:
        """Base URL without a trailing slash."""
        return self.base_url.rstrip("/")
