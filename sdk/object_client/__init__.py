"""Client SDK for the object gateway."""
from .client import BucketEvent, ObjectClient, ObjectClientError, iter_sse

__all__ = ["BucketEvent", "ObjectClient", "ObjectClientError", "iter_sse"]
