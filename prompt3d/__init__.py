"""prompt3d: text/image to 3D model generation with provider fallback.

Package layout:
    - `core`: request/result contracts, error taxonomy and the orchestrator.
    - `providers`: configuration, registry and protocol adapters.
    - `image`: input-image resolution and text-to-image client.
    - `fallback`: offline procedural shape generator.
    - `api`: HTTP and CLI adapters.
"""

__version__ = "0.1.0"
