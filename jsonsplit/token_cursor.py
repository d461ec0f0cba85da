"""Forward-only token cursor over ijson events."""
import ijson, json, logging, os
from typing import Any, Iterable, Iterator, Optional, TextIO, Tuple

from jsonsplit.errors import MalformedStreamError

logger = logging.getLogger(__name__)

START_EVENTS = frozenset(('start_map', 'start_array'))
END_EVENTS = frozenset(('end_map', 'end_array'))
SCALAR_EVENTS = frozenset(('null', 'boolean', 'number', 'string'))


class TokenCursor:
    """Pull-based cursor over the ``(event, value)`` pairs of ``ijson.basic_parse``.

    Only one token is ever held: ``current_token``/``current_value`` describe the
    token most recently returned by :meth:`next_token`.
    """

    def __init__(self, events: Iterable[Tuple[str, Any]]):
        self._events: Iterator[Tuple[str, Any]] = iter(events)
        self._token: Optional[str] = None
        self._value: Any = None
        self._closed = False

    @classmethod
    def from_stream(cls, stream, backend: Optional[str] = None) -> 'TokenCursor':
        """Build a cursor reading from a binary stream.

        ``backend`` names an ijson backend; it falls back to ``JSON_SPLIT_BACKEND``
        and then to ijson's default backend.
        """
        if stream is None:
            raise ValueError("Input cannot be null")
        backend = backend or os.environ.get("JSON_SPLIT_BACKEND")
        module = ijson.get_backend(backend) if backend else ijson
        logger.debug("reading tokens with ijson backend %s", getattr(module, 'backend_name', backend or 'default'))
        return cls(module.basic_parse(stream))

    @property
    def current_token(self) -> Optional[str]:
        return self._token

    @property
    def current_value(self) -> Any:
        return self._value

    @property
    def current_name(self) -> Optional[str]:
        """Field name when positioned on a ``map_key`` token."""
        return self._value if self._token == 'map_key' else None

    @property
    def is_closed(self) -> bool:
        return self._closed

    def next_token(self) -> Optional[str]:
        """Advance to the next token; ``None`` once the stream is exhausted."""
        if self._closed:
            return None
        try:
            self._token, self._value = next(self._events)
        except StopIteration:
            self._token, self._value = None, None
        return self._token

    def next_field_name(self) -> Optional[str]:
        return self._value if self.next_token() == 'map_key' else None

    def next_text_value(self) -> Optional[str]:
        return self._value if self.next_token() == 'string' else None

    def next_boolean_value(self) -> Optional[bool]:
        return self._value if self.next_token() == 'boolean' else None

    def next_int_value(self, default: int) -> int:
        token = self.next_token()
        if token == 'number' and isinstance(self._value, int):
            return self._value
        return default

    def skip_children(self) -> None:
        """Consume the rest of the container whose start token is current."""
        if self._token not in START_EVENTS:
            return
        depth = 1
        while depth:
            token = self.next_token()
            if token is None:
                break
            if token in START_EVENTS:
                depth += 1
            elif token in END_EVENTS:
                depth -= 1

    def close(self) -> None:
        close = getattr(self._events, 'close', None)
        if close is not None:
            close()
        self._closed = True
        self._token, self._value = None, None


def _encode_scalar(token: str, value: Any) -> str:
    if token == 'string':
        return json.dumps(value, ensure_ascii=False)
    if token == 'boolean':
        return 'true' if value else 'false'
    if token == 'null':
        return 'null'
    # ints and Decimals print as JSON numbers; floats only appear with use_float backends
    if isinstance(value, float):
        return json.dumps(value)
    return str(value)


def copy_current_structure(cursor, out: TextIO) -> None:
    """Write the structure starting at the cursor's current token to ``out`` as JSON text.

    For a container this pulls tokens up to and including the matching end token,
    so the cursor is left on that end token.
    """
    token = cursor.current_token
    if token in SCALAR_EVENTS:
        out.write(_encode_scalar(token, cursor.current_value))
        return
    if token not in START_EVENTS:
        raise ValueError(f"Cannot copy structure starting at token {token!r}")

    # one [kind, members written] entry per open container
    open_containers = []
    while True:
        if token in END_EVENTS:
            out.write('}' if token == 'end_map' else ']')
            open_containers.pop()
            if not open_containers:
                return
        else:
            if open_containers:
                parent = open_containers[-1]
                if parent[0] == 'array' or token == 'map_key':
                    if parent[1]:
                        out.write(',')
                    parent[1] += 1
            if token == 'map_key':
                out.write(json.dumps(cursor.current_value, ensure_ascii=False))
                out.write(':')
            elif token == 'start_map':
                out.write('{')
                open_containers.append(['map', 0])
            elif token == 'start_array':
                out.write('[')
                open_containers.append(['array', 0])
            else:
                out.write(_encode_scalar(token, cursor.current_value))

        token = cursor.next_token()
        if token is None:
            raise MalformedStreamError("JSON structure ended before its closing token")
