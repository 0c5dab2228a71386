"""Per-URL analyzers and the scan orchestrator."""
