"""
SOAPify backend package.

Design intent:
- Turn dictated audio or free clinical text into persisted SOAP notes.
- Keep adapters (asr/storage/note) independent from the HTTP surface.
"""
