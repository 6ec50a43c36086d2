from .app import create_app, serve, status_for

__all__ = ["create_app", "serve", "status_for"]
