"""
Field resolution: turn a record shape into an ordered tuple of exported fields.

Rules
-----
- If *any* field of a shape carries explicit column metadata, only those
  fields are exported, ordered by ``index`` and then by declaration order.
- Otherwise every declared field is exported in declaration order.
- Header = explicit header, else :func:`derive_header` of the field name.
- Kind = explicit kind (unless ``default``), else inferred from the native type.
"""

import dataclasses
import decimal
import inspect
import operator
import re
import sys
import types
import weakref
from collections.abc import Callable, Iterator, Mapping, Sequence
from datetime import date, datetime
from typing import Any, ClassVar, NamedTuple, Union, get_args, get_origin, get_type_hints

import polars as pl
from loguru import logger

from .metadata import get_field_column_meta, get_sheet_meta, split_annotated
from .spec import EnumCellKind, SpecColumnMeta, SpecResolvedField, SpecSheetMeta

TypeRecordCollection = Sequence[Any] | pl.DataFrame

_CACHE_SHAPE_FIELDS: "weakref.WeakKeyDictionary[type, tuple[SpecResolvedField, ...]]" = (
    weakref.WeakKeyDictionary()
)

################################################################################
# #region HeaderDerivation

_RE_WORD_SEPARATORS = re.compile(r"[\s_]+")

_N_CHAR_UPPER = 1
_N_CHAR_LOWER = 2
_N_CHAR_DIGIT = 3
_N_CHAR_OTHER = 4


def _classify_char(ch: str) -> int:
    if ch.isupper():
        return _N_CHAR_UPPER
    if ch.islower():
        return _N_CHAR_LOWER
    if ch.isdigit():
        return _N_CHAR_DIGIT
    return _N_CHAR_OTHER


def split_camel_case(token: str) -> list[str]:
    """
    Split a token at character-type boundaries.

    An upper-case run followed by a lower-case letter gives its last capital
    to the next word.

    Examples:
        >>> split_camel_case("dateOfBirth")
        ['date', 'Of', 'Birth']
        >>> split_camel_case("HTTPServer2")
        ['HTTP', 'Server', '2']
    """
    if not token:
        return []
    l_words: list[str] = []
    n_idx_start = 0
    n_type_current = _classify_char(token[0])
    for _pos in range(1, len(token)):
        n_type_ = _classify_char(token[_pos])
        if n_type_ == n_type_current:
            continue
        if n_type_ == _N_CHAR_LOWER and n_type_current == _N_CHAR_UPPER:
            n_idx_new_start_ = _pos - 1
            if n_idx_new_start_ != n_idx_start:
                l_words.append(token[n_idx_start:n_idx_new_start_])
                n_idx_start = n_idx_new_start_
        else:
            l_words.append(token[n_idx_start:_pos])
            n_idx_start = _pos
        n_type_current = n_type_
    l_words.append(token[n_idx_start:])
    return l_words


def derive_header(identifier: str | None) -> str:
    """
    Derive a human readable header from an identifier.

    ``"agentName"`` and ``"agent_name"`` both become ``"Agent Name"`` /
    ``"Agent name"``. Underscores and whitespace are word separators, so an
    already derived header is returned unchanged.
    """
    if not identifier:
        return ""
    l_words: list[str] = []
    for _chunk in _RE_WORD_SEPARATORS.split(identifier):
        l_words.extend(split_camel_case(_chunk))
    c_header = " ".join(l_words)
    return c_header[:1].upper() + c_header[1:]


# #endregion
################################################################################
# #region NativeTypeInference

# Order matters: ``bool`` before ``int``, ``datetime`` before ``date``.
TUP_NATIVE_KINDS: tuple[tuple[type, EnumCellKind], ...] = (
    (bool, EnumCellKind.GENERAL),
    (int, EnumCellKind.INTEGER),
    (float, EnumCellKind.PRECISE),
    (decimal.Decimal, EnumCellKind.DECIMAL),
    (datetime, EnumCellKind.DATETIME),
    (date, EnumCellKind.DATE),
    (str, EnumCellKind.GENERAL),
)


def unwrap_optional(native_type: Any) -> Any:
    """``Optional[T]`` / ``T | None`` -> ``T``; other unions are kept as is."""
    if get_origin(native_type) in (Union, types.UnionType):
        l_args = [_arg for _arg in get_args(native_type) if _arg is not type(None)]
        if len(l_args) == 1:
            return unwrap_optional(l_args[0])
    return native_type


def classify_native_type(native_type: Any) -> type | None:
    """Return the base type of ``TUP_NATIVE_KINDS`` matching ``native_type``."""
    tp = unwrap_optional(native_type)
    tp = get_origin(tp) or tp  # list[str] -> list
    if not isinstance(tp, type):
        return None
    for _base, _ in TUP_NATIVE_KINDS:
        if issubclass(tp, _base):
            return _base
    return None


def infer_kind(native_type: Any) -> EnumCellKind:
    cls_base = classify_native_type(native_type)
    if cls_base is None:
        return EnumCellKind.GENERAL
    return dict(TUP_NATIVE_KINDS)[cls_base]


def map_polars_dtype(dtype: Any) -> tuple[type, EnumCellKind]:
    if dtype == pl.Boolean:
        return bool, EnumCellKind.GENERAL
    if dtype.is_integer():
        return int, EnumCellKind.INTEGER
    if dtype == pl.Float32:
        return float, EnumCellKind.DECIMAL
    if dtype.is_float():
        return float, EnumCellKind.PRECISE
    if dtype == pl.Decimal:
        return decimal.Decimal, EnumCellKind.DECIMAL
    if dtype == pl.Datetime:
        return datetime, EnumCellKind.DATETIME
    if dtype == pl.Date:
        return date, EnumCellKind.DATE
    return str, EnumCellKind.GENERAL


# #endregion
################################################################################
# #region FieldSelection


class _DeclaredField(NamedTuple):
    name: str
    native_type: Any
    meta: SpecColumnMeta | None
    accessor: Callable[[Any], Any]


def _create_key_accessor(key: Any) -> Callable[[Any], Any]:
    def _get(record: Any) -> Any:
        return record.get(key)

    return _get


def _create_resolved_field(declared: _DeclaredField) -> SpecResolvedField:
    meta = declared.meta
    kind_override = (
        meta.kind
        if meta is not None and meta.kind is not EnumCellKind.DEFAULT
        else None
    )
    return SpecResolvedField(
        name=declared.name,
        header=(meta.header if meta is not None and meta.header else "")
        or derive_header(declared.name),
        kind=kind_override or infer_kind(declared.native_type),
        native_type=declared.native_type,
        accessor=declared.accessor,
        kind_override=kind_override,
    )


def select_fields(
    declared: Sequence[_DeclaredField],
) -> tuple[SpecResolvedField, ...]:
    l_annotated = [
        (_pos, _decl) for _pos, _decl in enumerate(declared) if _decl.meta is not None
    ]
    if not l_annotated:
        return tuple(_create_resolved_field(_decl) for _decl in declared)

    l_annotated.sort(key=lambda t: (t[1].meta.index if t[1].meta else 0, t[0]))
    return tuple(_create_resolved_field(_decl) for _, _decl in l_annotated)


# #endregion
################################################################################
# #region ShapeIntrospection


def _resolve_field_hint(owner: type, name: str, hint: Any) -> Any:
    """
    Evaluate one string annotation in the namespace of the class declaring it.

    An unresolvable hint (e.g. a name only imported under ``TYPE_CHECKING``)
    stays a string, which later infers as ``general``; sibling fields are
    unaffected.
    """
    if not isinstance(hint, str):
        return hint
    module_ = sys.modules.get(owner.__module__)
    dict_globals = dict(vars(module_)) if module_ is not None else {}
    cls_holder = type(f"_{name}_hint", (), {"__annotations__": {name: hint}})
    # Module names win over class attributes, as in `get_type_hints`.
    try:
        return get_type_hints(
            cls_holder,
            globalns=dict(vars(owner)),
            localns=dict_globals,
            include_extras=True,
        )[name]
    except (NameError, TypeError, SyntaxError, AttributeError) as e:
        logger.debug(
            f"Type hint of `{owner.__qualname__}.{name}` is not resolvable ({e}); "
            "exporting it as text."
        )
        return hint


def _get_own_annotations(cls: type) -> dict[str, Any]:
    try:
        return inspect.get_annotations(cls)
    except NameError:
        # Lazily evaluated annotations (3.14+) naming an undefined type.
        import annotationlib

        return annotationlib.get_annotations(
            cls, format=annotationlib.Format.STRING
        )


def _resolve_shape_hints(shape: type) -> dict[str, Any]:
    """Annotations of ``shape`` and its bases, base-first, resolved per field."""
    dict_hints: dict[str, Any] = {}
    for _cls in reversed(shape.__mro__):
        if _cls is object:
            continue
        for _name, _hint in _get_own_annotations(_cls).items():
            dict_hints[_name] = _resolve_field_hint(_cls, _name, _hint)
    return dict_hints


def _check_is_classvar(hint: Any) -> bool:
    if isinstance(hint, str):
        return hint.split("[", 1)[0].strip() in {"ClassVar", "typing.ClassVar"}
    return hint is ClassVar or get_origin(hint) is ClassVar


def _collect_declared_fields(shape: type) -> list[_DeclaredField]:
    dict_hints = _resolve_shape_hints(shape)
    l_declared: list[_DeclaredField] = []

    if dataclasses.is_dataclass(shape):
        for _fld in dataclasses.fields(shape):
            native_type_, meta_annotated_ = split_annotated(
                dict_hints.get(_fld.name, _fld.type)
            )
            l_declared.append(
                _DeclaredField(
                    name=_fld.name,
                    native_type=native_type_,
                    meta=get_field_column_meta(_fld) or meta_annotated_,
                    accessor=operator.attrgetter(_fld.name),
                )
            )
        return l_declared

    for _name, _hint in dict_hints.items():
        if _check_is_classvar(_hint):
            continue
        native_type_, meta_annotated_ = split_annotated(_hint)
        l_declared.append(
            _DeclaredField(
                name=_name,
                native_type=native_type_,
                meta=meta_annotated_,
                accessor=operator.attrgetter(_name),
            )
        )
    return l_declared


def resolve_shape_fields(shape: type) -> tuple[SpecResolvedField, ...]:
    """
    Resolve the exported fields of a class shape.

    Computed once per shape and held only as long as the class itself lives;
    the accessors are plain attribute getters.
    """
    tup_fields = _CACHE_SHAPE_FIELDS.get(shape)
    if tup_fields is None:
        tup_fields = select_fields(_collect_declared_fields(shape))
        _CACHE_SHAPE_FIELDS[shape] = tup_fields
    return tup_fields


def resolve_mapping_fields(
    records: Sequence[Mapping[Any, Any]],
    *,
    create_accessor: Callable[[Any], Callable[[Any], Any]] = _create_key_accessor,
) -> tuple[SpecResolvedField, ...]:
    """Fields of mapping records: keys of the first record, typed by first non-null value."""
    l_declared: list[_DeclaredField] = []
    for _key in records[0].keys():
        native_type_ = next(
            (
                type(_val)
                for _rec in records
                if isinstance(_rec, Mapping) and (_val := _rec.get(_key)) is not None
            ),
            type(None),
        )
        l_declared.append(
            _DeclaredField(
                name=str(_key),
                native_type=native_type_,
                meta=None,
                accessor=create_accessor(_key),
            )
        )
    return select_fields(l_declared)


def resolve_frame_fields(df: pl.DataFrame) -> tuple[SpecResolvedField, ...]:
    l_fields: list[SpecResolvedField] = []
    for _name, _dtype in df.schema.items():
        native_type_, kind_ = map_polars_dtype(_dtype)
        l_fields.append(
            SpecResolvedField(
                name=_name,
                header=derive_header(_name),
                kind=kind_,
                native_type=native_type_,
                accessor=_create_key_accessor(_name),
            )
        )
    return tuple(l_fields)


# #endregion
################################################################################
# #region RecordCollections


def normalize_collection(collection: Any) -> TypeRecordCollection | None:
    """
    Materialize one caller-supplied collection.

    Returns ``None`` for ``None``; raises ``TypeError`` for values that are not
    record collections (a single mapping, a string ...).
    """
    if collection is None or isinstance(collection, pl.DataFrame):
        return collection
    if isinstance(collection, (str, bytes, Mapping)):
        raise TypeError(
            f"Expected a collection of records, got {type(collection).__name__}."
        )
    if isinstance(collection, Sequence):
        return collection
    try:
        return list(collection)
    except TypeError as e:
        raise TypeError(
            f"Expected a collection of records, got {type(collection).__name__}."
        ) from e


def count_records(collection: TypeRecordCollection | None) -> int:
    if collection is None:
        return 0
    if isinstance(collection, pl.DataFrame):
        return collection.height
    return len(collection)


def iter_records(collection: TypeRecordCollection) -> Iterator[Any]:
    if isinstance(collection, pl.DataFrame):
        return collection.iter_rows(named=True)
    return iter(collection)


def resolve_collection_fields(
    collection: TypeRecordCollection,
) -> tuple[SpecResolvedField, ...]:
    if isinstance(collection, pl.DataFrame):
        return resolve_frame_fields(collection)

    record_first = collection[0]
    if isinstance(record_first, Mapping):
        return resolve_mapping_fields(collection)

    tup_fields = resolve_shape_fields(type(record_first))
    if tup_fields:
        return tup_fields

    # Plain objects without annotations: fall back to their instance attributes.
    if hasattr(record_first, "__dict__"):
        logger.debug(
            f"Shape `{type(record_first).__qualname__}` declares no fields; "
            "using instance attributes of the first record."
        )
        return resolve_mapping_fields(
            [vars(_rec) for _rec in collection], create_accessor=operator.attrgetter
        )
    raise TypeError(
        f"Cannot resolve fields of shape `{type(record_first).__qualname__}`."
    )


def resolve_collection_shape(
    collection: TypeRecordCollection,
) -> tuple[str, SpecSheetMeta]:
    """Return ``(derived_shape_name, sheet_meta)`` of a non-empty collection."""
    if isinstance(collection, pl.DataFrame):
        return "", SpecSheetMeta()
    record_first = collection[0]
    if isinstance(record_first, Mapping):
        return "", SpecSheetMeta()
    shape = type(record_first)
    return derive_header(shape.__name__), get_sheet_meta(shape)


# #endregion
################################################################################
