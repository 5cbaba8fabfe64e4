"""
SOAP structuring for the note pipeline.

Design intent:
- Keep the model call and the defensive output parsing in separate modules.
- Guarantee a five-field record regardless of what the model returns.
"""
