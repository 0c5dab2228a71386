"""WebWatcher: multi-layer URL risk scoring with incident reporting."""

__version__ = "1.0.0"
