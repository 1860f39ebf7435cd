"""Infrastructure layer exports."""

from .remote import HttpRemoteStore, InMemoryRemoteStore, RemoteStore, RemoteStoreError, build_remote_store

__all__ = [
    "HttpRemoteStore",
    "InMemoryRemoteStore",
    "RemoteStore",
    "RemoteStoreError",
    "build_remote_store",
]
