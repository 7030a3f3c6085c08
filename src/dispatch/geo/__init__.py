"""Geolocation store and proximity ranking."""

from dispatch.geo.store import GeolocationStore, proxy_distance

__all__ = ["GeolocationStore", "proxy_distance"]
