import weakref
from typing import Optional, Any
from collections.abc import Iterable, Iterator, Mapping, MutableMapping
import orjson
import jsonpickle
from .concealed import ConcealedValue, PLACEHOLDER, json_default
from .encryption.manager import EncryptionManager
from .exceptions import EncryptionError, MalformedEnvelope
from .fields import EncryptedField


class EncryptedRecord(MutableMapping[str, Any]):
    """Record dict-like object with encrypted fields.

    Plaintext attributes are stored as-is in _data. Encrypted fields are
    stored as envelope bytes and returned as ConcealedValue on access,
    decrypted fresh on every read. The record keeps weak references to the
    values it handed out, so ``clear_encrypted_fields()`` can wipe them.

    AAD source values are read from the record at the moment of each write
    or read, so changing an AAD source after a write makes the encrypted
    field fail authentication until it is written again.

    Declare encrypted fields on a subclass::

        class User(EncryptedRecord):
            encrypted_fields = (
                EncryptedField('ssn', aad_fields=('email',)),
            )
    """

    encrypted_fields: tuple[EncryptedField, ...] = ()
    record_type: Optional[str] = None

    _data: dict[str, Any] = {}

    # Internal attributes that should not be stored in _data
    _internal_attrs = frozenset({
        '_data', '_fields', '_manager', '_identifier', '_changed',
        '_record_type', '_issued',
    })

    def __init__(
        self,
        manager: EncryptionManager,
        identifier: Any,
        *,
        data: Optional[Mapping[str, Any]] = None,
        fields: Iterable[EncryptedField] = (),
        record_type: Optional[str] = None,
    ) -> None:
        # Initialize internal storage first (before any attribute access)
        object.__setattr__(self, '_data', {})
        object.__setattr__(self, '_changed', False)
        declared = list(self.encrypted_fields) + list(fields)
        self._fields = {f.name: f for f in declared}
        self._manager = manager
        self._identifier = str(identifier)
        self._record_type = record_type or self.record_type or type(self).__name__
        self._issued = weakref.WeakSet()
        ## Data updating: plaintext attributes first, so every AAD source
        ## is in place before the encrypted fields are written.
        if data:
            for key, value in data.items():
                self._data[key] = None if key in self._fields else value
            for key, value in data.items():
                if key in self._fields:
                    self[key] = value
        self._changed = False

    @classmethod
    def from_storage(
        cls,
        manager: EncryptionManager,
        identifier: Any,
        stored: Mapping[str, Any],
        **kwargs,
    ) -> 'EncryptedRecord':
        """Rebuild a record from stored values (envelopes stay encrypted)."""
        record = cls(manager, identifier, **kwargs)
        for key, value in stored.items():
            if key in record._fields and value is not None:
                if isinstance(value, str):
                    value = value.encode('utf-8')
                if not manager.codec.is_valid(value):
                    raise MalformedEnvelope(
                        "Stored value is not an envelope",
                        record_type=record._record_type,
                        field_name=key,
                    )
            record._data[key] = value
        return record

    def __repr__(self) -> str:
        plain = [k for k in self._data if k not in self._fields]
        return (
            f'<EncryptedRecord {self._record_type}:{self._identifier} '
            f'fields={plain!r}, encrypted={list(self._fields)!r}>'
        )

    # --- Encryption helpers ---

    def _aad_values(self, field: EncryptedField) -> dict[str, Any]:
        return {name: self._data.get(name) for name in field.aad_fields}

    def _get_value(self, key: str) -> Any:
        if key in self._fields:
            field = self._fields[key]
            if key not in self._data:
                raise KeyError(key)
            value = field.decrypt_value(
                self._manager, self._record_type, self._identifier,
                self._data[key], self._aad_values(field),
            )
            if value is not None:
                self._issued.add(value)
            return value
        return self._data[key]

    def _set_value(self, key: str, value: Any) -> None:
        if key in self._fields:
            field = self._fields[key]
            if isinstance(value, ConcealedValue):
                # writing back a value read from this same field keeps its envelope
                context = field.context(self._record_type, self._identifier)
                if not value.belongs_to_context(context):
                    raise EncryptionError(
                        "Concealed value belongs to another record or field",
                        record_type=self._record_type,
                        field_name=key,
                    )
                if key in self._data:
                    return
            value = field.encrypt_value(
                self._manager, self._record_type, self._identifier,
                value, self._aad_values(field),
            )
        self._data[key] = value
        self._changed = True

    def _del_value(self, key: str) -> None:
        del self._data[key]
        self._changed = True

    # --- Properties ---

    @property
    def identifier(self) -> str:
        return self._identifier

    @property
    def record_name(self) -> str:
        return self._record_type

    @property
    def fields(self) -> dict[str, EncryptedField]:
        return dict(self._fields)

    @property
    def is_changed(self) -> bool:
        return self._changed

    @is_changed.setter
    def is_changed(self, value: bool) -> None:
        self._changed = value

    def changed(self) -> None:
        self._changed = True

    def envelope(self, key: str) -> Optional[bytes]:
        """Stored envelope of an encrypted field."""
        if key not in self._fields:
            raise KeyError(f"{key} is not an encrypted field")
        return self._data.get(key)

    def to_storage(self) -> dict:
        """Values to persist: plaintext attributes and envelope strings."""
        stored = {}
        for key, value in self._data.items():
            if key in self._fields and isinstance(value, bytes):
                value = value.decode('utf-8')
            stored[key] = value
        return stored

    def to_json(self) -> bytes:
        return orjson.dumps(self.to_storage(), default=json_default)

    def safe_dump(self) -> dict:
        """Values safe for API output: encrypted fields are concealed."""
        return {
            key: (PLACEHOLDER if key in self._fields and value is not None else value)
            for key, value in self._data.items()
        }

    def encrypted_fields_status(self) -> dict[str, dict]:
        """Encryption status of every encrypted field, without decrypting."""
        status = {}
        for name in self._fields:
            envelope = self._data.get(name)
            if envelope is None:
                status[name] = {'encrypted': False, 'value': None}
                continue
            parsed = self._manager.parse(envelope)
            status[name] = {
                'encrypted': True,
                'algorithm': parsed.algorithm,
                'key_version': parsed.key_version,
                'needs_rotation': self._manager.needs_rotation(parsed),
            }
        return status

    def rotate_encrypted_fields(self) -> list[str]:
        """Re-encrypt every field not under the current key version."""
        rotated = []
        for name, field in self._fields.items():
            envelope = self._data.get(name)
            if envelope is None or not self._manager.needs_rotation(envelope):
                continue
            context = field.context(
                self._record_type, self._identifier, self._aad_values(field)
            )
            self._data[name] = self._manager.reencrypt(
                envelope, context, field.aad_fields
            )
            rotated.append(name)
        if rotated:
            self._changed = True
        return rotated

    def has_encrypted_data(self) -> bool:
        """True when any encrypted field holds an envelope."""
        return any(self._data.get(name) is not None for name in self._fields)

    def encryption_info(self) -> dict[str, Any]:
        """Algorithm and sizes this record's manager uses for new writes."""
        return self._manager.encryption_info()

    def clear_encrypted_fields(self) -> int:
        """Clear every concealed value handed out by this record.

        Envelopes are kept. Returns the number of values cleared.
        """
        cleared = 0
        for value in list(self._issued):
            if not value.cleared:
                value.clear()
                cleared += 1
        return cleared

    def encrypted_fields_cleared(self) -> bool:
        """True when no concealed value handed out by this record is readable."""
        return all(value.cleared for value in list(self._issued))

    # --- Magic Methods ---

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._data))

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __getitem__(self, key: str) -> Any:
        return self._get_value(key)

    def __setitem__(self, key: str, value: Any) -> None:
        self._set_value(key, value)

    def __delitem__(self, key: str) -> None:
        self._del_value(key)

    def __getattr__(self, key: str) -> Any:
        # Avoid infinite recursion for internal attributes
        if key.startswith('_'):
            raise AttributeError(key)
        try:
            return self._get_value(key)
        except KeyError:
            raise AttributeError(key) from None

    def __setattr__(self, key: str, value: Any) -> None:
        # Handle internal attributes and properties normally
        if (
            key in self._internal_attrs
            or key.startswith('_')
            or isinstance(getattr(type(self), key, None), property)
        ):
            object.__setattr__(self, key, value)
        else:
            self._set_value(key, value)

    def encode(self, obj: Any) -> str:
        """encode

            Encode an object using jsonpickle.
            Concealed values are flattened to the placeholder.
        Args:
            obj (Any): Object to be encoded using jsonpickle

        Raises:
            RuntimeError: Error converting data to json.

        Returns:
            str: json version of the data
        """
        try:
            return jsonpickle.encode(obj)
        except Exception as err:
            raise RuntimeError(err) from err
