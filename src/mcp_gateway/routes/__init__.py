"""
Gateway Routes

FastAPI routers for the JSON-RPC endpoint, the manifest and health checks.
"""
