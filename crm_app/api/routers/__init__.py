"""
FastAPI routers for the import API.

Each module owns one slice of the surface: CSV upload and mapping
(``imports``), job listing (``jobs``) and the progress WebSocket (``progress``).
"""
