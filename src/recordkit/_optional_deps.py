"""
Optional third-party stacks.

``recordkit`` itself only needs ``loguru``; the spreadsheet export needs the
``xlsx`` extra (``xlsxwriter`` + ``polars``). Modules behind an extra are
imported lazily and a missing distribution surfaces as a
``ModuleNotFoundError`` carrying the install command.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from importlib import import_module
from types import ModuleType
from typing import Any


@dataclass(frozen=True, slots=True)
class SpecOptionalFeature:
    feature: str
    extras: tuple[str, ...]
    required_modules: tuple[str, ...] = ()

    @property
    def install_hint(self) -> str:
        c_extras = ",".join(dict.fromkeys(self.extras))
        return (
            f'Install extras with `pip install "recordkit[{c_extras}]"` '
            f"or sync in development with `pdm sync -G test -G {c_extras}`."
        )


FEATURE_IO_XLSX = SpecOptionalFeature(
    feature="recordkit.io.xlsx",
    extras=("xlsx",),
    required_modules=("xlsxwriter", "polars"),
)


def build_optional_dependency_error(
    spec: SpecOptionalFeature, missing_module: str | None
) -> ModuleNotFoundError:
    c_missing = (
        f"Missing optional dependency `{missing_module}`."
        if missing_module
        else "Missing optional dependency."
    )
    return ModuleNotFoundError(
        f"{spec.feature} is unavailable. {c_missing} {spec.install_hint}",
        name=missing_module,
    )


def _collect_top_level_names(dotted_names: Sequence[str]) -> set[str]:
    return {_name.split(".")[0] for _name in dotted_names if _name}


def import_optional_module(
    module_name: str, *, package: str | None, spec: SpecOptionalFeature
) -> ModuleType:
    """
    Import ``module_name``; translate a missing distribution of ``spec`` into
    an install hint. Unrelated missing modules are re-raised unchanged.
    """
    try:
        return import_module(module_name, package=package)
    except ModuleNotFoundError as exc:
        set_missing = _collect_top_level_names([exc.name or ""])
        if set_missing & _collect_top_level_names(spec.required_modules):
            raise build_optional_dependency_error(spec, exc.name) from exc
        raise


def import_optional_attr(
    module_name: str, attr_name: str, *, package: str | None, spec: SpecOptionalFeature
) -> Any:
    return getattr(
        import_optional_module(module_name, package=package, spec=spec), attr_name
    )
