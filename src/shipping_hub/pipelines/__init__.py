from .tracking_refresh import TrackingRefreshProcessor

__all__ = ["TrackingRefreshProcessor"]
