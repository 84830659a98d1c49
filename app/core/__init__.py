"""Core gameplay primitives (outbound event names and per-player views).

Kept free of FastAPI concerns so it can be reused by the WebSocket layer, HTTP routes, and tests.
"""
