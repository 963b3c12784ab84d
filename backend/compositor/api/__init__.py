from compositor.api.routes import router

__all__ = ["router"]
