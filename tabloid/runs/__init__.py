"""Generation orchestration core.

Architecture (bottom-up):
- event_bus: In-memory pub/sub of run events to live stream subscribers
- breaker: Process-wide circuit breaker over slow/failed real attempts
- fallback: Picks a stored artifact to replay when the live path is skipped
- simulation: Synthetic event sequence that replays a fallback artifact
- orchestrator: Per-request state machine racing the generator against a deadline
- watcher: Announces artifacts that appear in the store
"""
