"""Typed plan and operation models accepted by the mutation pipeline."""

from __future__ import annotations

import re
from typing import Annotated, Any, Literal, Tuple, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator

__all__ = [
    "MAX_CONTENT_BYTES",
    "MAX_OPERATIONS",
    "MAX_PACKAGES",
    "Operation",
    "OperationType",
    "PackageInstallOperation",
    "PackageRemoveOperation",
    "PatchOperation",
    "Plan",
    "WriteOperation",
]

MAX_OPERATIONS = 100
MAX_CONTENT_BYTES = 500_000
MAX_PATCH_CHARS = 10_000
MAX_PACKAGES = 20
MAX_PATH_LENGTH = 500
MAX_PACKAGE_NAME_LENGTH = 100

OperationType = Literal["write", "patch", "package_install", "package_remove"]

_PATH_PATTERN = re.compile(r"^[\w\-/.@]+$")
_UUID_PATTERN = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")
_PACKAGE_PATTERN = re.compile(r"^(@[\w\-]+/)?[\w\-]+$")


def _check_path(value: str) -> str:
    if not value:
        raise ValueError("Path cannot be empty")
    if len(value) > MAX_PATH_LENGTH:
        raise ValueError("Path too long")
    if not _PATH_PATTERN.match(value):
        raise ValueError("Path contains invalid characters")
    return value


def _check_package(value: str) -> str:
    if len(value) > MAX_PACKAGE_NAME_LENGTH:
        raise ValueError("Package name too long")
    if not _PACKAGE_PATTERN.match(value):
        raise ValueError("Invalid package name format")
    return value


def _check_packages(value: Tuple[str, ...]) -> Tuple[str, ...]:
    if not value:
        raise ValueError("At least one package required")
    if len(value) > MAX_PACKAGES:
        raise ValueError(f"Too many packages (max {MAX_PACKAGES} per operation)")
    return value


OperationPath = Annotated[str, AfterValidator(_check_path)]
PackageName = Annotated[str, AfterValidator(_check_package)]
PackageList = Annotated[Tuple[PackageName, ...], AfterValidator(_check_packages)]


class _OperationModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class WriteOperation(_OperationModel):
    """Create or overwrite a file.

    ``overwrite`` is carried in the payload and audit log; plan writes always replace existing files.
    """

    type: Literal["write"]
    path: OperationPath
    content: str
    overwrite: bool = False

    @field_validator("content")
    @classmethod
    def _content_size(cls, value: str) -> str:
        if len(value.encode("utf-8")) > MAX_CONTENT_BYTES:
            raise ValueError("Content exceeds 500KB limit")
        return value


class PatchOperation(_OperationModel):
    """Replace the first occurrence of ``search`` in an existing file."""

    type: Literal["patch"]
    path: OperationPath
    search: str
    replace: str

    @field_validator("search")
    @classmethod
    def _search_bounds(cls, value: str) -> str:
        if not value:
            raise ValueError("Search pattern required")
        if len(value) > MAX_PATCH_CHARS:
            raise ValueError("Search pattern too long")
        return value

    @field_validator("replace")
    @classmethod
    def _replace_bounds(cls, value: str) -> str:
        if len(value) > MAX_PATCH_CHARS:
            raise ValueError("Replacement text too long")
        return value


class PackageInstallOperation(_OperationModel):
    """Add dependencies to the package manifest."""

    type: Literal["package_install"]
    packages: PackageList
    dev: bool = False


class PackageRemoveOperation(_OperationModel):
    """Remove dependencies from the package manifest."""

    type: Literal["package_remove"]
    packages: PackageList


Operation = Annotated[
    Union[WriteOperation, PatchOperation, PackageInstallOperation, PackageRemoveOperation],
    Field(discriminator="type"),
]


def _check_uuid(value: str, label: str) -> str:
    if not _UUID_PATTERN.fullmatch(value):
        raise ValueError(f"Invalid {label} ID format")
    return value.lower()


class Plan(BaseModel):
    """An ordered batch of operations executed at most once per ``plan_id``."""

    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    plan_id: str = Field(alias="planId")
    session_id: str = Field(alias="sessionId")
    operations: Tuple[Operation, ...]

    @field_validator("plan_id")
    @classmethod
    def _plan_uuid(cls, value: str) -> str:
        return _check_uuid(value, "plan")

    @field_validator("session_id")
    @classmethod
    def _session_uuid(cls, value: str) -> str:
        return _check_uuid(value, "session")

    @field_validator("operations", mode="before")
    @classmethod
    def _operation_count(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            if not value:
                raise ValueError("Plan must contain at least one operation")
            if len(value) > MAX_OPERATIONS:
                raise ValueError(f"Plan exceeds maximum of {MAX_OPERATIONS} operations")
        return value

    def to_payload(self) -> dict[str, Any]:
        """Render the plan with its external camelCase field names."""
        return self.model_dump(by_alias=True, mode="json")
