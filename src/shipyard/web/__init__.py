"""Web layer for Shipyard.

FastAPI application factory, middleware, error mapping, webhook
notifications and the REST route modules.
"""
