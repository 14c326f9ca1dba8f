"""
ConcealedValue — an opaque holder for decrypted secrets.

Every default representation (``str``, ``repr``, ``format``, jsonpickle and
the ``json_default`` hook for orjson/json) renders ``[CONCEALED]``. The
plaintext is only reachable through an explicit accessor:

    value.reveal(lambda token: client.login(token))   # scoped, then cleared
    with value.revealed("utf-8") as token:             # scoped, then cleared
        ...
    token = value.unwrap("utf-8")                      # unscoped, higher risk

Security Note:
    ``clear()`` zeroes the internal buffer, but copies handed out by the
    accessors (``bytes``/``str`` objects) are ordinary Python objects that
    cannot be wiped. Keep revealed values short-lived.
"""
from contextlib import contextmanager
from typing import Any, Callable, Optional, TypeVar, Union
from collections.abc import Iterator

import jsonpickle

from .exceptions import AlreadyCleared

PLACEHOLDER = "[CONCEALED]"

T = TypeVar("T")


class ConcealedValue:
    """Decrypted plaintext that does not leak through formatting."""

    __slots__ = ("_buffer", "_cleared", "_origin", "__weakref__")

    def __init__(
        self,
        plaintext: Union[bytes, bytearray, str],
        context: Optional[Any] = None,
    ) -> None:
        if isinstance(plaintext, str):
            plaintext = plaintext.encode("utf-8")
        object.__setattr__(self, "_buffer", bytearray(plaintext))
        object.__setattr__(self, "_cleared", False)
        # non-secret (record_type, field_name, record_identifier) of the source
        origin = None
        if context is not None:
            origin = (
                str(context.record_type),
                str(context.field_name),
                str(context.record_identifier),
            )
        object.__setattr__(self, "_origin", origin)

    def __setattr__(self, key: str, value: Any) -> None:
        raise AttributeError("ConcealedValue is read-only")

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def _plaintext(self, encoding: Optional[str]) -> Union[bytes, str]:
        if self._cleared:
            raise AlreadyCleared("Concealed value already cleared")
        raw = bytes(self._buffer)
        return raw.decode(encoding) if encoding else raw

    def reveal(
        self,
        callback: Callable[[Union[bytes, str]], T],
        encoding: Optional[str] = None,
    ) -> T:
        """Call ``callback`` with the plaintext, then clear this value.

        The value is cleared even when ``callback`` raises.

        Args:
            callback: receives the plaintext as bytes, or str when
                ``encoding`` is given.
            encoding: optional text encoding for the plaintext.

        Returns:
            Whatever ``callback`` returns.

        Raises:
            AlreadyCleared: if the value was cleared before.
        """
        plaintext = self._plaintext(encoding)
        try:
            return callback(plaintext)
        finally:
            del plaintext
            self.clear()

    @contextmanager
    def revealed(self, encoding: Optional[str] = None) -> Iterator[Union[bytes, str]]:
        """Context-manager form of ``reveal``."""
        plaintext = self._plaintext(encoding)
        try:
            yield plaintext
        finally:
            del plaintext
            self.clear()

    def unwrap(self, encoding: Optional[str] = None) -> Union[bytes, str]:
        """Return the plaintext without clearing.

        Higher risk than ``reveal``: the returned object outlives any scope
        and can leak through logging or serialization. Prefer ``reveal``.
        """
        return self._plaintext(encoding)

    def clear(self) -> None:
        """Zero the internal buffer (best effort). Safe to call twice."""
        if self._cleared:
            return
        self._buffer[:] = bytes(len(self._buffer))
        object.__setattr__(self, "_buffer", bytearray())
        object.__setattr__(self, "_cleared", True)

    @property
    def cleared(self) -> bool:
        return self._cleared

    @property
    def origin(self) -> Optional[tuple[str, str, str]]:
        """``(record_type, field_name, record_identifier)`` it was decrypted for."""
        return self._origin

    def belongs_to_context(self, context: Any) -> bool:
        """True when this value was decrypted for the same record and field.

        ``context`` is an ``EncryptionContext`` (or any object with
        ``record_type``, ``field_name`` and ``record_identifier``). Values
        created without a context belong to none.
        """
        if self._origin is None or context is None:
            return False
        return self._origin == (
            str(context.record_type),
            str(context.field_name),
            str(context.record_identifier),
        )

    # ------------------------------------------------------------------
    # Representation safety
    # ------------------------------------------------------------------

    def __str__(self) -> str:
        return PLACEHOLDER

    def __repr__(self) -> str:
        return PLACEHOLDER

    def __format__(self, format_spec: str) -> str:
        return format(PLACEHOLDER, format_spec)

    def __bytes__(self) -> bytes:
        return PLACEHOLDER.encode("ascii")

    def __eq__(self, other: object) -> bool:
        return self is other

    def __ne__(self, other: object) -> bool:
        return self is not other

    __hash__ = object.__hash__

    def __reduce_ex__(self, protocol):
        raise TypeError("ConcealedValue cannot be pickled")

    def __copy__(self):
        raise TypeError("ConcealedValue cannot be copied")

    def __deepcopy__(self, memo):
        raise TypeError("ConcealedValue cannot be copied")


def json_default(obj: Any) -> Any:
    """``default=`` hook for orjson/json that renders concealed values."""
    if isinstance(obj, ConcealedValue):
        return PLACEHOLDER
    raise TypeError(f"Type is not JSON serializable: {type(obj).__name__}")


class ConcealedHandler(jsonpickle.handlers.BaseHandler):
    """ConcealedHandler.
    Flattens concealed values to the placeholder; restores them cleared.
    """
    def flatten(self, obj, data):
        data['value'] = PLACEHOLDER
        return data

    def restore(self, obj):
        value = ConcealedValue(b"")
        value.clear()
        return value


jsonpickle.handlers.registry.register(ConcealedValue, ConcealedHandler)
