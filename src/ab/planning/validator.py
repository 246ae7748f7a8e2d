"""Security-first validation of AI-authored plans.

Validation runs in three phases. The structural phase checks the payload
against :class:`~ab.planning.schemas.Plan` and stops on the first failure.
The path phase rejects block-listed paths before consulting the allow-list,
so a blocked path is never rescued by an allow rule. The content phase scans
script files for high-risk constructs. Every error from the last two phases
is collected so the caller can fix the whole plan in one retry.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, List, Optional, Pattern, Tuple

from pydantic import ValidationError

from ..telemetry import emit_event
from .schemas import PatchOperation, Plan, WriteOperation

__all__ = [
    "PlanValidationError",
    "PlanValidator",
    "ValidationResult",
]

LOGGER = logging.getLogger(__name__)

_ALLOWED_PATTERNS: Tuple[Pattern[str], ...] = tuple(
    re.compile(source)
    for source in (
        # source directories
        r"^app/",
        r"^src/",
        r"^components/",
        r"^lib/",
        r"^utils/",
        r"^hooks/",
        r"^services/",
        r"^api/",
        r"^routes/",
        r"^pages/",
        # assets
        r"^public/",
        r"^static/",
        r"^assets/",
        r"^styles/",
        r"^css/",
        # documentation
        r"^docs/",
        r"^README\.md$",
        r"^CHANGELOG\.md$",
        # project configuration
        r"^package\.json$",
        r"^package-lock\.json$",
        r"^tsconfig\.json$",
        r"^tsconfig\..*\.json$",
        r"^vite\.config\.(ts|js|mjs)$",
        r"^vitest\.config\.(ts|js)$",
        r"^tailwind\.config\.(ts|js)$",
        r"^postcss\.config\.(js|cjs)$",
        r"^\.eslintrc\.(js|json|yaml|yml)$",
        r"^\.prettierrc\.(js|json|yaml|yml)$",
        r"^\.env\.example$",
        r"^\.gitignore$",
        r"^\.npmrc$",
    )
)

_BLOCKED_PATTERNS: Tuple[Pattern[str], ...] = (
    # traversal
    re.compile(r"\.\."),
    re.compile(r"//"),
    # system roots
    re.compile(r"^/etc/"),
    re.compile(r"^/root/"),
    re.compile(r"^/home/"),
    re.compile(r"^/usr/"),
    re.compile(r"^/var/"),
    re.compile(r"^/sys/"),
    re.compile(r"^/proc/"),
    re.compile(r"^/dev/"),
    re.compile(r"^/bin/"),
    re.compile(r"^/sbin/"),
    re.compile(r"^C:\\"),
    re.compile(r"^D:\\"),
    # credentials and secrets
    re.compile(r"\.env$"),
    re.compile(r"\.env\.local$"),
    re.compile(r"\.env\.production$"),
    re.compile(r"\.env\.development$"),
    re.compile(r"secrets\.", re.IGNORECASE),
    re.compile(r"credentials", re.IGNORECASE),
    re.compile(r"private.*key", re.IGNORECASE),
    re.compile(r"\.pem$"),
    re.compile(r"\.key$"),
    re.compile(r"\.cert$"),
    # version control, dependencies and build output
    re.compile(r"^\.git/"),
    re.compile(r"^\.svn/"),
    re.compile(r"^\.hg/"),
    re.compile(r"^node_modules/"),
    re.compile(r"^\.next/"),
    re.compile(r"^dist/"),
    re.compile(r"^build/"),
    re.compile(r"^out/"),
    re.compile(r"^coverage/"),
    # ssh and gpg material
    re.compile(r"\.ssh/"),
    re.compile(r"\.gnupg/"),
    re.compile(r"authorized_keys"),
    re.compile(r"known_hosts"),
    # databases
    re.compile(r"\.db$"),
    re.compile(r"\.sqlite$"),
    re.compile(r"\.sql$"),
    # OS junk
    re.compile(r"^\.DS_Store$"),
    re.compile(r"^thumbs\.db$", re.IGNORECASE),
    re.compile(r"^desktop\.ini$", re.IGNORECASE),
)

_SCRIPT_EXTENSION = re.compile(r"\.(js|jsx|ts|tsx|mjs|cjs)$")

_SUSPICIOUS_CONTENT: Tuple[Tuple[Pattern[str], str], ...] = (
    (re.compile(r"eval\s*\(", re.IGNORECASE), "Contains eval() - potential code injection risk"),
    (
        re.compile(r"new\s+Function\s*\(", re.IGNORECASE),
        "Contains Function() constructor - potential code injection risk",
    ),
    (re.compile(r"exec\s*\(", re.IGNORECASE), "Contains exec() - potential command injection risk"),
    (re.compile(r"(rm\s+-rf|rmdir\s+/)", re.IGNORECASE), "Contains dangerous file deletion commands"),
    (re.compile(r"curl.*\|\s*(bash|sh)", re.IGNORECASE), "Contains pipe to shell - potential RCE risk"),
)

_OPERATION_TAGS = frozenset({"write", "patch", "package_install", "package_remove"})


class PlanValidationError(ValueError):
    """Raised by :meth:`PlanValidator.require_valid` when a plan is rejected."""

    def __init__(self, errors: Sequence[str]) -> None:
        self.errors = list(errors)
        summary = "; ".join(self.errors[:3])
        if len(self.errors) > 3:
            summary += f" (+{len(self.errors) - 3} more)"
        super().__init__(f"Plan rejected: {summary}")


@dataclass(slots=True)
class ValidationResult:
    """Outcome of validating a raw plan payload."""

    plan: Optional[Plan] = None
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.plan is not None and not self.errors

    def to_dict(self) -> dict[str, Any]:
        if self.success and self.plan is not None:
            return {"success": True, "plan": self.plan.to_payload()}
        return {"success": False, "errors": list(self.errors)}


class PlanValidator:
    """Validate raw plan payloads before any side effect occurs."""

    def validate(self, raw_plan: Any) -> ValidationResult:
        """Return the accepted plan or the full list of rejection reasons."""
        plan, schema_errors = self._parse(raw_plan)
        if plan is None:
            self._log_rejection(raw_plan, schema_errors, phase="schema")
            return ValidationResult(errors=schema_errors)

        errors: list[str] = []
        for index, operation in enumerate(plan.operations):
            if isinstance(operation, (WriteOperation, PatchOperation)):
                reason = self.check_path(operation.path)
                if reason:
                    errors.append(f"Operation {index} ({operation.type}): {reason}")

        for index, operation in enumerate(plan.operations):
            if isinstance(operation, WriteOperation):
                for reason in self.check_content(operation.content, operation.path):
                    errors.append(f"Operation {index} (write): {reason}")

        if errors:
            self._log_rejection(raw_plan, errors, phase="security")
            return ValidationResult(errors=errors)
        return ValidationResult(plan=plan)

    def require_valid(self, raw_plan: Any) -> Plan:
        """Return the accepted plan or raise :class:`PlanValidationError`."""
        result = self.validate(raw_plan)
        if not result.success or result.plan is None:
            raise PlanValidationError(result.errors)
        return result.plan

    @staticmethod
    def check_path(path: str) -> Optional[str]:
        """Return a rejection reason for ``path`` or ``None`` when it is safe."""
        for pattern in _BLOCKED_PATTERNS:
            if pattern.search(path):
                return f"Path '{path}' matches blocked pattern (security risk)"
        if not any(pattern.search(path) for pattern in _ALLOWED_PATTERNS):
            return f"Path '{path}' is not in allowed directories"
        return None

    @staticmethod
    def check_content(content: str, path: str) -> List[str]:
        """Return every high-risk construct found in a script file's content."""
        if not _SCRIPT_EXTENSION.search(path):
            return []
        return [reason for pattern, reason in _SUSPICIOUS_CONTENT if pattern.search(content)]

    @staticmethod
    def allowed_patterns() -> List[str]:
        return [pattern.pattern for pattern in _ALLOWED_PATTERNS]

    @staticmethod
    def blocked_patterns() -> List[str]:
        return [pattern.pattern for pattern in _BLOCKED_PATTERNS]

    @staticmethod
    def _parse(raw_plan: Any) -> Tuple[Optional[Plan], List[str]]:
        if not isinstance(raw_plan, Mapping):
            return None, [": Expected object, received " + type(raw_plan).__name__]
        try:
            return Plan.model_validate(dict(raw_plan)), []
        except ValidationError as error:
            return None, [_format_error(item) for item in error.errors()]

    @staticmethod
    def _log_rejection(raw_plan: Any, errors: Sequence[str], *, phase: str) -> None:
        plan_id = raw_plan.get("planId") if isinstance(raw_plan, Mapping) else None
        LOGGER.warning("Plan %s rejected during %s validation (%d error(s))", plan_id, phase, len(errors))
        emit_event("plan.validation.rejected", plan_id=plan_id, phase=phase, errors=list(errors))


def _format_error(item: Mapping[str, Any]) -> str:
    """Render a pydantic error as ``dotted.path: message``."""
    location: list[str] = []
    parts = list(item.get("loc") or ())
    for position, part in enumerate(parts):
        # discriminated unions insert the tag into the location
        if (
            isinstance(part, str)
            and part in _OPERATION_TAGS
            and position > 0
            and isinstance(parts[position - 1], int)
        ):
            continue
        location.append(str(part))
    message = str(item.get("msg") or "Invalid value")
    if message.startswith("Value error, "):
        message = message[len("Value error, ") :]
    return f"{'.'.join(location)}: {message}"
