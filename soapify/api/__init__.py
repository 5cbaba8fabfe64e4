"""
API boundary for SOAPify.

Design intent:
- Expose thin, typed endpoints for the audio and text note flows.
- Reject malformed requests before any external service is called.
"""
