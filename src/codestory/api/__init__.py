"""FastAPI application and REST API endpoints.

This module contains:
- Main FastAPI application configuration
- Story generation and progress endpoints
- Story catalog endpoints
- Git and health endpoints
"""
