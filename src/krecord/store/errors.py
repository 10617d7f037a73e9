"""Exceptions raised by the content store."""

from __future__ import annotations


class StoreError(Exception):
    """Base class for content store failures."""


class NotFoundError(StoreError, LookupError):
    """A diary, sheet, row or asset does not exist."""

    kind = "record"

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"{self.kind} not found: {key}")


class DiaryNotFoundError(NotFoundError):
    kind = "diary"


class SheetNotFoundError(NotFoundError):
    kind = "sheet"


class RowNotFoundError(NotFoundError):
    kind = "row"


class AssetNotFoundError(NotFoundError):
    kind = "asset"


class InvalidAssetPathError(StoreError, ValueError):
    """An asset path points outside the data root."""


class MalformedSheetError(StoreError, ValueError):
    """A sheet's CSV could not be read in full, so it is not rewritten."""
