from engagement.api.engagement import router

__all__ = ["router"]
