# utils/sentinels.py
from typing import Any, Self, ClassVar, Optional
from pydantic_core import core_schema
from pydantic.json_schema import JsonSchemaValue

class Missing:
	"""Marks a partial-update field that was not provided by the caller."""
	_instance: ClassVar[Optional["Missing"]] = None

	def __new__(cls) -> Self:
		if cls._instance is None:
			cls._instance = super().__new__(cls)
		return cls._instance

	def __repr__(self) -> str:
		return "MISSING"

	def __bool__(self) -> bool:
		return False

	@classmethod
	def __get_pydantic_core_schema__(cls, _source, _handler) -> core_schema.CoreSchema:
		def validate(v):
			if v is cls._instance:
				return v
			raise ValueError('value is not the Missing sentinel')
		return core_schema.no_info_plain_validator_function(validate)

	@classmethod
	def __get_pydantic_json_schema__(cls, _core_schema: core_schema.CoreSchema, _handler) -> JsonSchemaValue:
		return {
			"title": "Missing sentinel (internal)",
			"type": "string",
			"const": "MISSING",
			"description": "Internal placeholder meaning 'not provided'.",
			"readOnly": True,
			"writeOnly": True,
		}


MISSING = Missing()


def provided(value: Any) -> bool:
	return value is not MISSING
