"""Dependencias de FastAPI de la API v1."""
