"""Buffered payload handles and write-operation descriptors."""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class Format(Enum):
    UNKNOWN = 'unknown'
    JSON = 'json'
    TEXT = 'text'
    XML = 'xml'
    BINARY = 'binary'


@dataclass(frozen=True)
class StringHandle:
    """Self-contained text payload for one split target."""
    content: str
    format: Format = Format.UNKNOWN

    def with_format(self, format: Format) -> 'StringHandle':
        return StringHandle(self.content, format)

    def __str__(self) -> str:
        return self.content


class OperationType(Enum):
    DOCUMENT_WRITE = 'document_write'
    METADATA_DEFAULT = 'metadata_default'
    DISABLED_METADATA_DEFAULT = 'disabled_metadata_default'


@dataclass(frozen=True)
class DocumentWriteOperation:
    """A payload paired with the URI it should be written under."""
    operation_type: OperationType
    uri: str
    metadata: Optional[Any]
    content: Any
