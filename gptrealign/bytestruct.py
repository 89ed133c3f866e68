"""Packing and validation of fixed-layout binary data."""

from __future__ import annotations

import struct
from typing import TYPE_CHECKING, Any, ClassVar, Literal, NamedTuple, TypeVar

from typing_extensions import Annotated, get_args, get_origin, get_type_hints

from .base import ValidationError

if TYPE_CHECKING:
    from .typing_ import ReadableBuffer, WriteableBuffer

__all__ = ["ByteStruct"]


INT_CONVERSION = {1: "B", 2: "H", 4: "I", 8: "Q"}
BYTEORDERS = ("<", ">")
INTERNAL_NAMES = (
    "__bytestruct_fields__",
    "__bytestruct_format__",
    "__bytestruct_size__",
    "__bytestruct_cached__",
)

_Bs = TypeVar("_Bs", bound="ByteStruct")


class _FieldDescriptor(NamedTuple):
    """Metadata about a field of a `ByteStruct`.

    - `type_origin`: Origin of the `Annotated` type (`int` or `bytes`).
    - `size`: Size of the field in bytes.
    - `offset`: Position of the first byte of the field, relative to the start of
        the structure.
    """

    type_origin: type
    size: int
    offset: int


class _ByteStructMeta(type):
    """Metaclass of `ByteStruct`.

    Analyzes the type annotations found in a `ByteStruct` subclass and sets
    `__bytestruct_fields__`, `__bytestruct_format__` and `__bytestruct_size__`
    accordingly.

    - `__bytestruct_fields__` is a mapping of field names (`str`) to field
        descriptors (`_FieldDescriptor`).
    - `__bytestruct_format__` is the format string which is passed to
        `struct.pack()` and `struct.unpack()` to convert between the values of the
        `ByteStruct` and its `bytes` form as found in an image file.
    - `__bytestruct_size__` is the size of the `bytes` form of the `ByteStruct`
        in bytes.
    """

    def __new__(
        mcs,
        name: str,
        bases: tuple[type, ...],
        namespace: dict[str, Any],
        **kwargs: Any,
    ) -> _ByteStructMeta:
        """Provide a signature of `__new__()` which allows specifying `kwargs`
        like `byteorder` when subclassing `ByteStruct`.
        """
        return super().__new__(mcs, name, bases, namespace)

    def __init__(
        cls,
        name: str,
        bases: tuple[type, ...],
        namespace: dict[str, Any],
        byteorder: Literal["<", ">"] = "<",
    ):
        super().__init__(name, bases, namespace)
        if not bases:
            return  # cls is ByteStruct

        if byteorder not in BYTEORDERS:
            # native orders would make the layout depend on the host
            raise ValueError(
                f"Invalid byte order {byteorder!r}, must be one of {BYTEORDERS}"
            )

        type_hints = get_type_hints(cls, include_extras=True)
        format_ = byteorder
        offset = 0
        fields = {}

        for name, type_ in type_hints.items():
            if name in INTERNAL_NAMES or get_origin(type_) is ClassVar:
                continue

            if get_origin(type_) is not Annotated:
                raise TypeError(
                    f"Unannotated type {type_} of field {name!r} is not allowed for "
                    f"ByteStruct"
                )

            annotated_type, size, *_ = get_args(type_)
            if not isinstance(size, int):
                raise TypeError("Field size must be specified as int")
            if size < 1:
                raise ValueError("Field size must be greater than or equal to 1")

            if annotated_type is int:
                if size not in INT_CONVERSION:
                    raise ValueError(
                        f"Invalid int field size {size}, must be one of "
                        f"{tuple(INT_CONVERSION)}"
                    )
                format_ += INT_CONVERSION[size]
            elif annotated_type is bytes:
                format_ += f"{size}s"
            else:
                raise TypeError(
                    f"Annotated type {annotated_type} of field {name!r} is not "
                    f"allowed for ByteStruct"
                )

            fields[name] = _FieldDescriptor(annotated_type, size, offset)
            offset += size

        cls.__bytestruct_fields__ = fields
        cls.__bytestruct_format__ = format_
        cls.__bytestruct_size__ = struct.calcsize(format_)

    def __len__(cls) -> int:
        """Size of the `bytes` form of the `ByteStruct` in bytes."""
        return cls.__bytestruct_size__


class ByteStruct(metaclass=_ByteStructMeta):
    """Packed binary data with a fixed layout.

    A thin wrapper of a struct according to the `struct` module which adds:

    - Access to values by field name through integration with the `dataclass`
        decorator
    - Explicit field offsets, so a structure can be read from and written to any
        position of a larger buffer
    - Validation of values including an easy way to add custom validation logic

    Every `ByteStruct` subclass must be a frozen `dataclass`. Instances are
    immutable snapshots of the bytes they were parsed from. Use
    `dataclasses.replace()` to derive a modified snapshot and `write_into()` to
    store it.

    Example::

        @dataclasses.dataclass(frozen=True)
        class MyStruct(ByteStruct, byteorder='<'):

            field_1: Annotated[int, 2]      # unsigned int of size 2 bytes
            field_2: Annotated[int, 8]      # unsigned int of size 8 bytes
            field_3: Annotated[bytes, 16]   # bytes of size 16

    The `byteorder` argument can be one of `('<', '>')`. No padding is ever
    inserted between fields.
    """

    # Populated per class
    __bytestruct_fields__: dict[str, _FieldDescriptor]
    __bytestruct_format__: str
    __bytestruct_size__: int

    # Populated per instance
    __bytestruct_cached__: bytes

    @classmethod
    def _check_direct_instantiation(cls) -> None:
        """Raise `TypeError` if it is tried to directly instantiate `ByteStruct`
        and not a subclass of `ByteStruct`.
        """
        if cls.__bases__ == (object,):
            raise TypeError(f"Cannot directly instantiate {cls.__name__}")

    @classmethod
    def _check_frozen_dataclass(cls) -> None:
        """Raise `TypeError` if it is tried to instantiate a subclass of
        `ByteStruct` which is not a frozen `dataclass`.
        """
        params: Any = getattr(cls, "__dataclass_params__", None)
        if params is None or not params.frozen:
            raise TypeError("ByteStruct subclass must be a frozen dataclass")

    # noinspection PyUnusedLocal
    def __init__(self, *args: Any, **kwargs: Any):
        self._check_direct_instantiation()
        self._check_frozen_dataclass()

    def __post_init__(self) -> None:
        """Executed after instance creation as we expect every instance to be a
        `dataclass`.

        Triggers the internal and the user-defined validation logic.
        """
        self._check_frozen_dataclass()
        if not hasattr(self, "__bytestruct_cached__"):
            self._validate_and_cache()
        self.validate()

    def _validate_and_cache(self) -> None:
        """Validate field values against the defined formats.

        Because this involves creating a `bytes` version of the `ByteStruct`
        instance anyway, we cache the resulting `bytes` object.
        """
        values = []

        for name, descriptor in self.__bytestruct_fields__.items():
            value = getattr(self, name)
            if descriptor.type_origin is bytes and len(value) != descriptor.size:
                raise ValidationError(
                    f"Value of field {name!r} must be of length {descriptor.size} "
                    f"bytes, got {len(value)} bytes"
                )
            values.append(value)

        # int values are range-checked by struct.pack(), nothing wraps around
        try:
            bytes_ = struct.pack(self.__bytestruct_format__, *values)
        except (struct.error, OverflowError) as e:
            raise ValidationError(
                f"Value out of range in {self.__class__.__name__} (format is "
                f"{self.__bytestruct_format__!r})"
            ) from e

        # Avoid __setattr__() here because this is a frozen dataclass.
        self.__dict__["__bytestruct_cached__"] = bytes_

    def validate(self) -> None:
        """Custom validation logic.

        Automatically executed after object creation, but after validation of the
        field values against their corresponding formats.
        """

    @classmethod
    def offset_of(cls, name: str) -> int:
        """Offset of field `name` relative to the start of the structure."""
        return cls.__bytestruct_fields__[name].offset

    @classmethod
    def from_bytes(cls: type[_Bs], b: bytes) -> _Bs:
        """Parse structure from `bytes`."""
        cls._check_direct_instantiation()

        size = cls.__bytestruct_size__
        if len(b) != size:
            raise ValueError(f"Structure is {size} bytes long, got {len(b)} bytes")

        self = cls(*struct.unpack(cls.__bytestruct_format__, b))

        # Avoid __setattr__() here because this is a frozen dataclass.
        self.__dict__["__bytestruct_cached__"] = bytes(b)
        return self

    @classmethod
    def from_buffer(cls: type[_Bs], buffer: ReadableBuffer, offset: int = 0) -> _Bs:
        """Parse structure from `buffer`, starting at byte `offset`.

        The returned instance is a copy. Later changes to `buffer` are not
        reflected by it.
        """
        end = offset + cls.__bytestruct_size__
        if offset < 0 or end > len(buffer):
            raise ValueError(
                f"{cls.__name__} at offset {offset} does not fit into a buffer of "
                f"{len(buffer)} bytes"
            )
        return cls.from_bytes(bytes(buffer[offset:end]))

    def write_into(self, buffer: WriteableBuffer, offset: int = 0) -> None:
        """Write the `bytes` form of the structure to `buffer` at byte `offset`."""
        end = offset + self.__bytestruct_size__
        if offset < 0 or end > len(buffer):
            raise ValueError(
                f"{self.__class__.__name__} at offset {offset} does not fit into a "
                f"buffer of {len(buffer)} bytes"
            )
        buffer[offset:end] = self.__bytestruct_cached__

    def __bytes__(self) -> bytes:
        """`bytes` form of the `ByteStruct` instance."""
        return self.__bytestruct_cached__

    def __len__(self) -> int:
        """Size of the `bytes` form of the `ByteStruct` in bytes."""
        return self.__bytestruct_size__
