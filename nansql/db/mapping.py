"""Mapping between result columns and Python destination types."""

import dataclasses
import typing
from collections.abc import Mapping
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, List, Sequence, Union
from uuid import UUID

from pydantic import BaseModel, ValidationError

from nansql.exceptions import MappingError

SCALAR_TYPES = (int, float, str, bytes, bool, Decimal, datetime, date, time, UUID)

_MISSING = object()


def _type_name(model: Any) -> str:
    return getattr(model, '__name__', repr(model))


def _dataclass_columns(model: type) -> Dict[str, dataclasses.Field]:
    """Map lower-cased column names to dataclass fields.

    A field's column name is ``metadata["db"]`` when present, else the field name.
    """
    return {
        field.metadata.get('db', field.name).lower(): field
        for field in dataclasses.fields(model)
        if field.init
    }


def _resolve_hints(model: type) -> Dict[str, Any]:
    try:
        return typing.get_type_hints(model)
    except (NameError, TypeError):
        return {}


def _coerce(value: Any, hint: Any, target: str, column: str) -> Any:
    """Check ``value`` against a type hint, applying the lossless conversions drivers need."""
    if hint is None or hint is Any or hint is object:
        return value

    origin = typing.get_origin(hint)
    if origin is Union:
        members = [arg for arg in typing.get_args(hint) if arg is not type(None)]
        if value is None:
            if len(members) < len(typing.get_args(hint)):
                return None
            raise MappingError(f"cannot scan NULL into {target}.{column}", target, column)
        if len(members) == 1:
            return _coerce(value, members[0], target, column)
        return value

    if origin is not None or not isinstance(hint, type):
        return value

    if value is None:
        raise MappingError(
            f"cannot scan NULL into {target}.{column} of type {hint.__name__}",
            target,
            column,
        )
    if hint is bool and isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, hint) and not (hint is int and isinstance(value, bool)):
        return value
    if hint is float and isinstance(value, int) and not isinstance(value, bool):
        return float(value)
    if hint is Decimal and isinstance(value, (int, float)):
        return Decimal(str(value))

    raise MappingError(
        f"cannot scan {type(value).__name__} into {target}.{column} of type {hint.__name__}",
        target,
        column,
    )


def map_row(model: Any, columns: Sequence[str], values: Sequence[Any]) -> Any:
    """Build one ``model`` value from a result row.

    Supported destinations are ``dict``, ``tuple``, scalar types (single
    column results only), dataclasses, pydantic models and any other class
    whose constructor takes the column names as keyword arguments.

    Raises:
        MappingError: When the row's shape or value types do not fit ``model``.
    """
    target = _type_name(model)

    if model is dict:
        return dict(zip(columns, values))
    if model is tuple:
        return tuple(values)

    if model in SCALAR_TYPES:
        if len(columns) != 1:
            raise MappingError(
                f"scannable destination {target} expects 1 column, got {len(columns)}",
                target,
            )
        return _coerce(values[0], model, target, columns[0])

    if dataclasses.is_dataclass(model) and isinstance(model, type):
        fields = _dataclass_columns(model)
        hints = _resolve_hints(model)
        kwargs: Dict[str, Any] = {}
        for column, value in zip(columns, values):
            field = fields.get(column.lower())
            if field is None:
                raise MappingError(
                    f"missing destination name {column} in {target}",
                    target,
                    column,
                )
            kwargs[field.name] = _coerce(value, hints.get(field.name), target, column)
        try:
            return model(**kwargs)
        except TypeError as e:
            raise MappingError(f"cannot build {target} from row: {e}", target) from e

    row = dict(zip(columns, values))

    if isinstance(model, type) and issubclass(model, BaseModel):
        try:
            return model.model_validate(row)
        except ValidationError as e:
            raise MappingError(f"cannot build {target} from row: {e}", target) from e

    if callable(model):
        try:
            return model(**row)
        except TypeError as e:
            raise MappingError(f"cannot build {target} from row: {e}", target) from e

    raise MappingError(f"unsupported destination {target}", target)


def map_rows(model: Any, columns: Sequence[str], rows: Sequence[Sequence[Any]]) -> List[Any]:
    """Map every row onto ``model``."""
    return [map_row(model, columns, row) for row in rows]


def _to_params(arg: Any) -> Dict[str, Any]:
    if isinstance(arg, Mapping):
        return dict(arg)
    if isinstance(arg, BaseModel):
        return arg.model_dump(by_alias=True)
    if dataclasses.is_dataclass(arg) and not isinstance(arg, type):
        return {
            field.metadata.get('db', field.name): getattr(arg, field.name)
            for field in dataclasses.fields(arg)
        }
    if hasattr(arg, '__dict__'):
        return {key: value for key, value in vars(arg).items() if not key.startswith('_')}
    raise MappingError(f"unsupported type {type(arg).__name__} for named arguments", _type_name(type(arg)))


def named_params(arg: Any) -> Union[Dict[str, Any], List[Dict[str, Any]]]:
    """Flatten a named argument into bind parameters.

    A list or tuple of arguments yields a list of parameter dicts, to be run
    as one batch.
    """
    if isinstance(arg, (list, tuple)):
        if not arg:
            raise MappingError("length of named argument list is 0", "list")
        return [_to_params(item) for item in arg]
    return _to_params(arg)
