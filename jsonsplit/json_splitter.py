#!/usr/bin/env python3
"""Split a large JSON document into separate payloads without loading it whole.

The document is typically an array with one object per record. A visitor decides,
at every object and array boundary, whether to descend into the container, emit
it as its own payload or skip it.
"""
import ijson, io, logging, threading, uuid
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Generic, Iterator, List, Optional, TypeVar

from jsonsplit.errors import ContractViolationError, MalformedStreamError
from jsonsplit.handles import DocumentWriteOperation, Format, OperationType, StringHandle
from jsonsplit.token_cursor import END_EVENTS, START_EVENTS, TokenCursor, copy_current_structure

logger = logging.getLogger(__name__)

H = TypeVar('H')
T = TypeVar('T')


class NodeOperation(Enum):
    DESCEND = 'descend'
    PROCESS = 'process'
    SKIP = 'skip'


class ContainerCursor:
    """View of one container on a shared :class:`TokenCursor`.

    Created right after the container's start token was read, so depth starts at 1.
    The view runs out when the matching end token has been read; the shared cursor
    is then positioned exactly where the outer traversal should resume.
    """

    def __init__(self, cursor: TokenCursor):
        self._cursor = cursor
        self._depth = 1

    @property
    def depth(self) -> int:
        return self._depth

    @property
    def is_open(self) -> bool:
        return self._depth > 0

    @property
    def is_closed(self) -> bool:
        return self._depth == 0

    @property
    def current_token(self) -> Optional[str]:
        return self._cursor.current_token

    @property
    def current_value(self) -> Any:
        return self._cursor.current_value

    @property
    def current_name(self) -> Optional[str]:
        return self._cursor.current_name

    def _maintain_depth(self, token: Optional[str]) -> None:
        if token is None:
            raise MalformedStreamError("Token stream ended inside an open container")
        if token in START_EVENTS:
            self._depth += 1
        elif token in END_EVENTS:
            self._depth -= 1

    def next_token(self) -> Optional[str]:
        if self._depth == 0:
            raise ContractViolationError("The JSON branch is closed")
        token = self._cursor.next_token()
        self._maintain_depth(token)
        return token

    # The typed pulls return None past the end instead of raising; serializers
    # call them to look at what comes next.
    def next_field_name(self) -> Optional[str]:
        if self._depth == 0:
            return None
        name = self._cursor.next_field_name()
        self._maintain_depth(self._cursor.current_token)
        return name

    def next_text_value(self) -> Optional[str]:
        if self._depth == 0:
            return None
        text = self._cursor.next_text_value()
        self._maintain_depth(self._cursor.current_token)
        return text

    def next_boolean_value(self) -> Optional[bool]:
        if self._depth == 0:
            return None
        value = self._cursor.next_boolean_value()
        self._maintain_depth(self._cursor.current_token)
        return value

    def next_int_value(self, default: int) -> Optional[int]:
        if self._depth == 0:
            return None
        value = self._cursor.next_int_value(default)
        self._maintain_depth(self._cursor.current_token)
        return value

    def next_long_value(self, default: int) -> Optional[int]:
        # ints are unbounded, so longs need nothing extra
        return self.next_int_value(default)

    def skip_children(self) -> None:
        if self._depth and self._cursor.current_token in START_EVENTS:
            self._cursor.skip_children()
            self._depth -= 1

    def drain(self) -> None:
        """Read whatever is left of the container."""
        while self._depth:
            self.next_token()

    def close(self) -> None:
        raise ContractViolationError("Current JSON branch cannot be closed.")


class Visitor(ABC, Generic[H]):
    """Rule for which objects and arrays of a document become separate payloads.

    The default rule emits the first object or array found inside an array. Subclasses
    override the hooks they need and must provide :meth:`make_buffered_handle`.
    """

    def __init__(self):
        self.array_depth = 0

    def start_object(self, container_key: Optional[str]) -> NodeOperation:
        """Decide what to do with an object; ``container_key`` is the key of its parent."""
        if self.array_depth > 0:
            return NodeOperation.PROCESS
        return NodeOperation.DESCEND

    def end_object(self, container_key: Optional[str]) -> None:
        pass

    def start_array(self, container_key: Optional[str]) -> NodeOperation:
        """Decide what to do with an array; a descended array counts toward ``array_depth``."""
        if self.array_depth > 0:
            return NodeOperation.PROCESS
        self.array_depth += 1
        return NodeOperation.DESCEND

    def end_array(self, container_key: Optional[str]) -> None:
        if self.array_depth > 0:
            self.array_depth -= 1

    @abstractmethod
    def make_buffered_handle(self, container_cursor: ContainerCursor) -> Optional[H]:
        """Build the payload for the container under ``container_cursor``.

        Returning None drops the container without emitting anything.
        """

    def make_document_write_operation(self, handle: H) -> DocumentWriteOperation:
        if handle is None:
            raise ValueError("Handle cannot be null")
        uri = f"{uuid.uuid4()}.json"
        return DocumentWriteOperation(OperationType.DOCUMENT_WRITE, uri, None, handle)

    def serialize(self, container_cursor: ContainerCursor) -> str:
        """Copy the container under ``container_cursor`` into a JSON string."""
        if container_cursor is None:
            raise ValueError("Container cursor cannot be null")
        buffer = io.StringIO()
        try:
            copy_current_structure(container_cursor, buffer)
        except (ijson.JSONError, OSError) as e:
            logger.error(f"serialize failed: {e}")
            raise MalformedStreamError("Could not serialize the document") from e
        return buffer.getvalue()


class ArrayVisitor(Visitor[StringHandle]):
    """Emit every object or array directly inside the first array; never the array itself.

    ``handle_factory`` builds payloads of another type straight from the container cursor.
    """

    def __init__(self, handle_factory: Optional[Callable[[ContainerCursor], Any]] = None):
        super().__init__()
        self.handle_factory = handle_factory

    def start_array(self, container_key: Optional[str]) -> NodeOperation:
        self.array_depth += 1
        if self.array_depth > 1:
            # emitted whole, so it never encloses anything the traversal sees
            self.array_depth -= 1
            return NodeOperation.PROCESS
        return NodeOperation.DESCEND

    def make_buffered_handle(self, container_cursor: ContainerCursor):
        if container_cursor is None:
            raise ValueError("Container cursor cannot be null")
        if self.handle_factory is not None:
            return self.handle_factory(container_cursor)
        return StringHandle(self.serialize(container_cursor)).with_format(Format.JSON)


class JSONSplitter(Generic[H]):
    """Split a JSON stream into one buffered handle per container the visitor selects."""

    @staticmethod
    def make_array_splitter() -> 'JSONSplitter[StringHandle]':
        """Splitter emitting each object or array of the top array as a JSON StringHandle."""
        return JSONSplitter(ArrayVisitor())

    def __init__(self, visitor: Visitor[H]):
        self.visitor = visitor
        self._count = 0
        self._count_lock = threading.Lock()

    @property
    def visitor(self) -> Visitor[H]:
        return self._visitor

    @visitor.setter
    def visitor(self, visitor: Visitor[H]) -> None:
        if visitor is None:
            raise ValueError("Visitor cannot be null")
        self._visitor = visitor

    @property
    def count(self) -> int:
        """Number of payloads emitted so far by all iterators of this splitter."""
        return self._count

    def _increment_count(self) -> None:
        with self._count_lock:
            self._count += 1

    def split(self, input) -> 'HandleIterator[H]':
        """Lazily split a binary JSON stream (or a TokenCursor) into handles.

        The caller keeps ownership of the stream and closes it once done iterating.
        """
        return HandleIterator(self, self._as_cursor(input))

    def split_write_operations(self, input) -> 'DocumentWriteOperationIterator':
        """Like :meth:`split`, but wrap each handle in a DocumentWriteOperation."""
        return DocumentWriteOperationIterator(self, self._as_cursor(input))

    @staticmethod
    def _as_cursor(input) -> TokenCursor:
        if input is None:
            raise ValueError("Input cannot be null")
        if isinstance(input, TokenCursor):
            return input
        return TokenCursor.from_stream(input)


class _JSONSplitIterator(Iterator[T], Generic[T, H]):
    """Walks the token stream and stops at each container the visitor selects.

    Safe to share between threads: each ``next()`` holds the iterator's lock for the
    whole pull, since every pull moves the one shared cursor.
    """

    def __init__(self, splitter: JSONSplitter[H], cursor: TokenCursor):
        if splitter is None:
            raise ValueError("JSONSplitter cannot be null")
        self._splitter = splitter
        self._visitor = splitter.visitor
        self._cursor = cursor
        self._keys: List[Optional[str]] = []
        self._lock = threading.Lock()
        self._exhausted = False

    @property
    def splitter(self) -> JSONSplitter[H]:
        return self._splitter

    def __iter__(self) -> '_JSONSplitIterator[T, H]':
        return self

    def __length_hint__(self):
        # unknown until the stream runs out
        return NotImplemented

    def __next__(self) -> T:
        with self._lock:
            try:
                handle = self._next_handle()
            except Exception:
                self._exhausted = True
                raise
            if handle is None:
                raise StopIteration
            item = self._convert(handle)
            self._splitter._increment_count()
        logger.debug("emitted document %s", self._splitter.count)
        return item

    def _convert(self, handle: H) -> T:
        raise NotImplementedError

    def _peek_key(self) -> Optional[str]:
        return self._keys[-1] if self._keys else None

    def _next_handle(self) -> Optional[H]:
        if self._exhausted:
            return None
        cursor = self._cursor
        try:
            while cursor.next_token() is not None:
                token = cursor.current_token

                if token == 'map_key':
                    if self._keys:
                        self._keys.pop()
                    self._keys.append(cursor.current_name)

                elif token == 'start_map':
                    operation = self._visitor.start_object(self._peek_key())
                    if operation is NodeOperation.DESCEND:
                        self._keys.append(None)
                    else:
                        handle = self._apply(operation)
                        if handle is not None:
                            return handle

                elif token == 'end_map':
                    self._visitor.end_object(self._peek_key())
                    if self._keys:
                        self._keys.pop()

                elif token == 'start_array':
                    # arrays have no key of their own, so nothing is pushed
                    operation = self._visitor.start_array(self._peek_key())
                    if operation is not NodeOperation.DESCEND:
                        handle = self._apply(operation)
                        if handle is not None:
                            return handle

                elif token == 'end_array':
                    self._visitor.end_array(self._peek_key())

        except (ijson.JSONError, OSError) as e:
            logger.error(f"traverse failed: {e}")
            raise MalformedStreamError("Failed to traverse document") from e

        self._exhausted = True
        logger.info("Split finished after %s documents", self._splitter.count)
        return None

    def _apply(self, operation: NodeOperation) -> Optional[H]:
        if operation is NodeOperation.PROCESS:
            container_cursor = ContainerCursor(self._cursor)
            handle = self._visitor.make_buffered_handle(container_cursor)
            container_cursor.drain()
            return handle
        if operation is NodeOperation.SKIP:
            self._cursor.skip_children()
            return None
        raise ContractViolationError(f"Unknown state: {operation!r}")


class HandleIterator(_JSONSplitIterator[H, H]):
    """Yields the visitor's buffered handles."""

    def _convert(self, handle: H) -> H:
        return handle


class DocumentWriteOperationIterator(_JSONSplitIterator[DocumentWriteOperation, H]):
    """Yields a DocumentWriteOperation per handle, built when the item is pulled."""

    def _convert(self, handle: H) -> DocumentWriteOperation:
        return self._visitor.make_document_write_operation(handle)
