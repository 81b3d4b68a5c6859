"""Generation provider adapters.

Module split:
    - `provider_config`: environment-driven endpoints, credentials and policy.
    - `base`: `ProviderAdapter` contract and per-attempt context.
    - `extraction`: ordered model-reference extraction strategies.
    - `sync_inference`: single blocking multipart call.
    - `task_polling`: upload -> submit -> poll protocols.
    - `session_predict`: session-scoped predict protocol.
    - `registry`: builds the ordered adapter list.
"""
