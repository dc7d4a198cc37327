from abc import ABC, abstractmethod


class Storage(ABC):
    @abstractmethod
    def save_invoice(self, payment_id: str, content: bytes, ext: str) -> str:
        """Save an invoice artifact; returns full path."""
        raise NotImplementedError

    @abstractmethod
    def read(self, path: str) -> bytes:
        raise NotImplementedError

    @abstractmethod
    def exists(self, path: str) -> bool:
        raise NotImplementedError
