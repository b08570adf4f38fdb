from crit.api.router import ReviewWaiter, create_api_router

__all__ = ["ReviewWaiter", "create_api_router"]
