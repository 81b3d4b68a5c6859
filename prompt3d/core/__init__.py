"""Core pipeline package.

Architectural role:
    Holds the request-orchestration layer between the API/CLI entrypoints and
    the provider adapters.

Composition:
    - `types`: request, attempt, progress and result records.
    - `errors`: pipeline error taxonomy.
    - `orchestrator`: ordered provider attempts plus procedural fallback.

Package import is side-effect free; modules are imported explicitly.
"""
