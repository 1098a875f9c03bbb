"""Loom — content reconciliation and change notification for a headless CMS.

Two halves share one package:

- **Editing**: a draft overlay over published items, field-level pending
  changes, and debounced persistence into the content repository.
- **Notification**: a polling change detector that hashes remote snapshots,
  classifies state transitions into typed events, and dispatches them to
  webhook-style handlers.

Quick start::

    import loom

    config = loom.load_config(".")
    live = loom.LiveUpdates(config)
    live.register(on_webhook)

Entry points::

    loom.watch(".")    # Poll and print change events
    loom.serve(".")    # Webhook receiver with dev polling

"""

__version__ = "0.1.0.dev0"
__all__ = [
    "LiveUpdates",
    "LoomConfig",
    "__version__",
    "load_config",
    "serve",
    "watch",
]


def __getattr__(name: str) -> object:
    """Lazy imports for the public API.

    Keeps ``import loom`` fast; httpx and chirp load only when used.
    """
    if name == "LoomConfig":
        from loom.config import LoomConfig

        return LoomConfig

    if name == "load_config":
        from loom.config_loader import load_config

        return load_config

    if name == "LiveUpdates":
        from loom.sync.service import LiveUpdates

        return LiveUpdates

    if name == "watch":
        from loom.app import watch

        return watch

    if name == "serve":
        from loom.app import serve

        return serve

    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
