"""
Edit Chronology Engine

Records every fine-grained edit made to a source file as a durable,
time-ordered operation log, then reconstructs and navigates the file's
evolution after the fact. Each layer communicates only through explicit
contracts, never through shared mutable state.

LAYER STRUCTURE:
================

1. CONTRACTS (contracts/)
   - Operation model, errors, audit and notification events
   - All types are frozen dataclasses

2. TEMPORAL LAYER (temporal/)
   - Responsibility: Capture sessions, operation logs, replay and timelines
   - Outputs: Durable logs (via storage), reconstructed text, focal events
   - MUST NOT: Aggregate across sessions

3. STORAGE LAYER (storage/)
   - Responsibility: XML codec and the append-only history directory
   - MUST NOT: Interpret operations, rewrite existing logs

4. REPOSITORY LAYER (repository/)
   - Responsibility: Merge logs into a project/package/file index,
     resolve rename/move continuity
   - MUST NOT: Expose a half-built index

5. CORE ANALYSIS (core/)
   - Responsibility: Operation dependency graph over one file

6. OBSERVABILITY (observability/)
   - Responsibility: Logging setup, audit trail

7. INTERFACES (api/, forensic.py)
   - Read-only FastAPI server and forensic CLI over the engine facade

CONSTRAINTS ENFORCED:
=====================
- Immutability-first: operations never change after capture
- Append-only: history files are never rewritten
- Deterministic: the same logs always produce the same index and text
- Explicit errors: skipped files and failed replays are reported, not hidden
"""

from .engine import ChronologyConfig, ChronologyEngine

__version__ = "0.1.0"

__all__ = [
    'ChronologyConfig',
    'ChronologyEngine',
]
