class NodeApiError(Exception):
    """Base for failures talking to the node. A poll cycle that hits one is dropped."""


class TransportError(NodeApiError):
    def __init__(self, method: str, message: str, status: int | None = None) -> None:
        super().__init__(f"{method}: {message}")
        self.method = method
        self.status = status

    @property
    def not_found(self) -> bool:
        return self.status == 404


class DecodeError(NodeApiError):
    def __init__(self, method: str, message: str) -> None:
        super().__init__(f"{method}: failed to decode response: {message}")
        self.method = method
