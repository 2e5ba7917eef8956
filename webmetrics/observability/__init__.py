"""HTTP metrics binding for FastAPI servers and httpx clients.

Request timing filters for both roles submit durations to a MeterRegistry that
sits on top of prometheus_client; structlog carries request context and access logs.
"""
