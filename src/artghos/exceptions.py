from pathlib import Path
from typing import Any


class ArtghosError(Exception):
    pass


class FormatError(ArtghosError):
    pass


class IntegrityError(ArtghosError):
    pass


class RiskRejectedError(ArtghosError):
    def __init__(self, message: str, results: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.results = results or {}


class FileSystemError(ArtghosError):
    def __init__(self, message: str, path: Path | str | None = None) -> None:
        super().__init__(f"{message}: {path}" if path is not None else message)
        self.path = path


class ModuleResolutionError(ArtghosError):
    pass
