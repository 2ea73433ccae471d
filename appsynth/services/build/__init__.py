"""Generation pipeline sub-package.

Sub-modules:
    stages          -- stage keys (settings-store instruction keys)
    models          -- project, file, phase, step, audit and message models
    events          -- typed build events and the event sink protocol
    cancellation    -- cancellation token and background job registry
    file_set        -- accumulated file set, merge rule, content sanitation
    runtime_check   -- entry-point check and the preview validator boundary
    step_executor   -- one LLM-backed stage with retries and debug trace
    supervisor      -- the generation state machine (start / repair)

Launching builds for projects (persistence, WebSocket fan-out) is handled by:
    appsynth/services/build_service.py
"""
