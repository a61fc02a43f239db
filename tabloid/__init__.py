"""Tabloid - generation orchestration service.

Generates tabloid-style snapshots through a slow external image model while
keeping the live UI responsive:
- Races each real generation against a deadline
- Trips a process-wide circuit breaker on repeated slowness/failure
- Falls back to previously produced artifacts with a simulated run
- Streams run lifecycle events to connected observers
"""

__version__ = "0.1.0"
