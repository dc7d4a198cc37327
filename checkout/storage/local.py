import os

from checkout.storage.base import Storage


class LocalStorage(Storage):
    def __init__(self, base_path: str) -> None:
        self.base_path = base_path

    def save_invoice(self, payment_id: str, content: bytes, ext: str) -> str:
        os.makedirs(self.base_path, exist_ok=True)
        path = os.path.join(self.base_path, f"{payment_id}{ext}")
        tmp_path = f"{path}.tmp"
        with open(tmp_path, "wb") as f:
            f.write(content)
        os.replace(tmp_path, path)
        return path

    def read(self, path: str) -> bytes:
        with open(path, "rb") as f:
            return f.read()

    def exists(self, path: str) -> bool:
        return os.path.isfile(path)
