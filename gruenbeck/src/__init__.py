"""
Collector daemon package for the Gruenbeck water-meter pipeline.

Polls a Gruenbeck softener's embedded web interface (``/mux_http``) for daily
water consumption, back-fills up to fourteen missing days exactly once, and
buffers the resulting gauge samples locally before uploading them over HTTPS.

CHANGELOG:
- 2026-10-12: Initial creation (STORY-001)

TODO:
- None
"""
