from .remote import RemoteSigner

__all__ = ["RemoteSigner"]
