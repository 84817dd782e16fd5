"""
Backend package for the pet marketplace API.

This package provides a FastAPI application over MongoDB-backed listing and
order stores, with Firebase ID-token verification for protected endpoints.
"""
