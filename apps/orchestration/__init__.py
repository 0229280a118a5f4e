"""
Analysis orchestration app.

Drives AI-backed analysis runs for project entities:

- Shared status state machine with an atomic claim (state_machine)
- Job kinds registry (jobs) and the runner that executes them (runner)
- Idempotent dispatch for webhooks, admin actions and chained jobs (dispatch)
- Derived record writing and fallback content (writers)
- Monitoring signals at every job boundary (signals)
"""
