# courier/core/codec/serde.py
from __future__ import annotations
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Union,
    cast,
)
import inspect
import json
from pydantic import PydanticSchemaGenerationError, TypeAdapter, ValidationError
from pydantic_core import PydanticSerializationError, to_jsonable_python
from courier.core.logging import get_logger

logger = get_logger('serde')


Json = Union[None, bool, int, float, str, List['Json'], Dict[str, 'Json']]
"""
Union type for JSON-serializable values.
"""

Decoder = Callable[[Json], Any]
"""
Turns a structured payload into a value of one concrete parameter type.
"""


class SerializationError(Exception):
    """
    Raised when a value cannot be encoded to, or decoded from, JSON.
    """

    pass


_DECODER_CACHE: Dict[Any, Decoder] = {}  # decoders keyed by parameter annotation


def clear_codec_caches() -> None:
    """Clear module-level decoder caches."""
    _DECODER_CACHE.clear()


def encode_argument(value: Any) -> Json:
    """
    Convert a task argument into its structured (JSON-compatible) encoding.

    Pydantic models, dataclasses, datetimes, enums, UUIDs, mappings and
    sequences are supported; anything pydantic cannot serialize is rejected.

    Args:
        value: The single argument of a dispatch target.

    Returns:
        A JSON-serializable value. For more information, see `Json` Union type.

    Raises:
        SerializationError: If the value is None or cannot be encoded.
    """
    if value is None:
        raise SerializationError(
            'Cannot encode None as a task argument; the envelope value must be present.'
        )
    try:
        encoded = to_jsonable_python(value)
    except PydanticSerializationError as e:
        raise SerializationError(
            f'Cannot serialize value of type {type(value).__name__}: {e}'
        ) from e
    return cast(Json, encoded)


def dumps_json(value: Json) -> str:
    """
    Serialize an already-structured value to a compact JSON string.

    Raises:
        SerializationError: If the value holds NaN/Infinity or non-JSON types.
    """
    try:
        return json.dumps(
            value,
            ensure_ascii=False,
            separators=(',', ':'),
            allow_nan=False,  # Prevent NaN values in JSON
        )
    except (TypeError, ValueError) as e:
        raise SerializationError(f'Cannot serialize to JSON: {e}') from e


def loads_json(s: Optional[Union[str, bytes]]) -> Json:
    """
    Deserialize a JSON string (or UTF-8 bytes) to a JSON value.

    Raises:
        SerializationError: If the text is not valid JSON.
    """
    if not s:
        return None
    try:
        return cast(Json, json.loads(s))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise SerializationError(f'Invalid JSON payload: {e}') from e


def _identity_decoder(value: Json) -> Any:
    return value


def _adapter_decoder(adapter: TypeAdapter[Any], label: str) -> Decoder:
    def decode(value: Json) -> Any:
        try:
            return adapter.validate_python(value)
        except ValidationError as e:
            raise SerializationError(
                f'Payload does not fit parameter type {label}: {e}'
            ) from e

    return decode


def _constructor_decoder(cls: type) -> Decoder:
    """Fallback for plain classes pydantic has no schema for.

    Mappings become keyword arguments, anything else a single positional one.
    Errors raised inside the constructor body are left alone.
    """

    def decode(value: Json) -> Any:
        if isinstance(value, cls):
            return value
        try:
            if isinstance(value, Mapping):
                bound = inspect.signature(cls).bind(**value)
            else:
                bound = inspect.signature(cls).bind(value)
        except TypeError as e:
            raise SerializationError(
                f'Payload does not fit constructor of {cls.__qualname__}: {e}'
            ) from e
        return cls(*bound.args, **bound.kwargs)

    return decode


def _build_decoder(param_type: Any) -> Decoder:
    if param_type is Any or param_type is inspect.Parameter.empty:
        return _identity_decoder

    label = getattr(param_type, '__qualname__', repr(param_type))
    try:
        adapter: TypeAdapter[Any] = TypeAdapter(param_type)
    except PydanticSchemaGenerationError:
        if not isinstance(param_type, type):
            raise
        logger.debug(f'No pydantic schema for {label}; decoding via its constructor')
        return _constructor_decoder(param_type)
    return _adapter_decoder(adapter, label)


def argument_decoder(param_type: Any) -> Decoder:
    """
    Return the decoder specialised to `param_type`, building it on first use.

    This is how a payload recovers its static type after the type was erased
    into two strings on the wire: the dispatcher asks for the decoder of the
    parameter annotation it discovered at registration time.

    Args:
        param_type: The annotated type of the target's single parameter.

    Returns:
        A callable turning a JSON value into an instance of `param_type`.
        It raises SerializationError when the payload does not fit.
    """
    try:
        cached = _DECODER_CACHE.get(param_type)
    except TypeError:
        # Unhashable annotation; build without caching
        return _build_decoder(param_type)
    if cached is not None:
        return cached

    decoder = _build_decoder(param_type)
    _DECODER_CACHE[param_type] = decoder
    return decoder
