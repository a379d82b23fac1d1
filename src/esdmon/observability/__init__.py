"""Observability subsystem for the ESD monitor.

structlog configuration, process uptime/memory collection and the health
checks served by /api/health.
"""
