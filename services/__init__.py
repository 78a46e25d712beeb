"""
Orchestrator Services

- credentials: credential pool, session context and credential source
- health: minimal probes and the full service diagnostic
- repair: single-flight auto-repair coordinator
- generation: text/image/speech/video orchestrator and its collaborators
- transport: google-genai and video proxy clients
"""
