# courier/core/models/envelope.py
from __future__ import annotations
from typing import Any, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from courier.core.codec.serde import (
    SerializationError,
    dumps_json,
    loads_json,
)
from courier.core.defaults import ATTRIBUTE_DECLARING_TYPE, ATTRIBUTE_METHOD_NAME
from courier.core.errors import ErrorCode, InvalidEnvelope, invalid_envelope


class Envelope(BaseModel):
    """
    Serializable description of a pending task.

    Wire form (exactly these top-level keys)::

        {"TypeName": "...", "MethodName": "...", "Value": <argument>}

    Fields are optional here so that a malformed message still parses into
    an Envelope and is rejected by the dispatcher with a precise error code.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type_name: Optional[str] = Field(default=None, alias='TypeName')
    method_name: Optional[str] = Field(default=None, alias='MethodName')
    value: Any = Field(default=None, alias='Value')

    def is_valid(self) -> bool:
        """Both names are non-blank and the value is present."""
        return self.invalid_reason() is None

    def invalid_reason(self) -> Optional[InvalidEnvelope]:
        """Return the error describing why this envelope is invalid, if it is."""
        if not self.type_name or not self.type_name.strip():
            return invalid_envelope(
                'envelope has a blank type name',
                code=ErrorCode.ENVELOPE_MISSING_TYPE_NAME,
                notes=[f'TypeName={self.type_name!r}'],
            )
        if not self.method_name or not self.method_name.strip():
            return invalid_envelope(
                'envelope has a blank method name',
                code=ErrorCode.ENVELOPE_MISSING_METHOD_NAME,
                notes=[f'TypeName={self.type_name!r}', f'MethodName={self.method_name!r}'],
            )
        if self.value is None:
            return invalid_envelope(
                'envelope has no value',
                code=ErrorCode.ENVELOPE_MISSING_VALUE,
                notes=[f'target: {self.type_name}.{self.method_name}'],
            )
        return None

    def attributes(self) -> dict[str, str]:
        """Advisory message attributes mirrored from the body."""
        return {
            ATTRIBUTE_DECLARING_TYPE: self.type_name or '',
            ATTRIBUTE_METHOD_NAME: self.method_name or '',
        }

    def to_json(self) -> bytes:
        """Encode the wire document as UTF-8 bytes."""
        return dumps_json(self.model_dump(by_alias=True, mode='json')).encode('utf-8')

    @classmethod
    def from_json(cls, body: Union[str, bytes]) -> Envelope:
        """
        Parse a wire document.

        Raises:
            InvalidEnvelope: If the body is not a JSON object with the expected field types.
        """
        try:
            data = loads_json(body)
        except SerializationError as e:
            raise invalid_envelope(
                'message body is not valid JSON',
                code=ErrorCode.ENVELOPE_MALFORMED,
                notes=[str(e)],
            ) from e

        if not isinstance(data, dict):
            raise invalid_envelope(
                'message body is not a JSON object',
                code=ErrorCode.ENVELOPE_MALFORMED,
                notes=[f'got {type(data).__name__}'],
            )

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise invalid_envelope(
                'message body does not match the envelope schema',
                code=ErrorCode.ENVELOPE_MALFORMED,
                notes=[f'{err["loc"]}: {err["msg"]}' for err in e.errors()],
            ) from e
