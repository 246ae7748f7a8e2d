from __future__ import annotations

import uuid

import pytest

from ab.planning.schemas import PatchOperation, WriteOperation
from ab.planning.validator import PlanValidationError, PlanValidator


def _write(path: str, content: str = "export const value = 1;\n") -> dict:
    return {"type": "write", "path": path, "content": content}


def test_accepts_well_formed_plan(make_plan) -> None:
    payload = make_plan(
        _write("src/App.tsx"),
        {"type": "patch", "path": "src/main.ts", "search": "a", "replace": "b"},
        {"type": "package_install", "packages": ["react", "@types/react"], "dev": True},
        {"type": "package_remove", "packages": ["lodash"]},
    )

    result = PlanValidator().validate(payload)

    assert result.success
    assert result.errors == []
    assert result.plan is not None
    assert result.plan.plan_id == payload["planId"]
    assert isinstance(result.plan.operations[0], WriteOperation)
    assert isinstance(result.plan.operations[1], PatchOperation)
    assert result.to_dict()["plan"]["planId"] == payload["planId"]


def test_blocked_pattern_wins_over_allow_list(make_plan) -> None:
    payload = make_plan(_write(".git/config", "[core]\n\trepositoryformatversion = 0\n"))

    result = PlanValidator().validate(payload)

    assert not result.success
    assert result.errors == [
        "Operation 0 (write): Path '.git/config' matches blocked pattern (security risk)"
    ]


@pytest.mark.parametrize(
    "path",
    ["src/../../etc/passwd", "/etc/hosts", "app/.env", "config/credentials.json", "node_modules/x/index.js", "data.sqlite"],
)
def test_blocked_paths_are_rejected(make_plan, path: str) -> None:
    result = PlanValidator().validate(make_plan(_write(path)))

    assert not result.success
    assert "matches blocked pattern" in result.errors[0]


def test_path_outside_allow_list_is_rejected(make_plan) -> None:
    result = PlanValidator().validate(make_plan(_write("scripts/deploy.txt", "hi")))

    assert result.errors == ["Operation 0 (write): Path 'scripts/deploy.txt' is not in allowed directories"]


def test_allow_list_covers_project_configuration() -> None:
    for path in ("package.json", "tsconfig.app.json", "vite.config.ts", "README.md", "public/logo.svg"):
        assert PlanValidator.check_path(path) is None


def test_content_scan_only_applies_to_script_files(make_plan) -> None:
    dangerous = "const run = () => eval(userInput);\n"
    script = PlanValidator().validate(make_plan(_write("src/run.ts", dangerous)))
    styles = PlanValidator().validate(make_plan(_write("styles/run.css", dangerous)))

    assert script.errors == ["Operation 0 (write): Contains eval() - potential code injection risk"]
    assert styles.success


def test_content_scan_reports_every_match(make_plan) -> None:
    content = "new Function('x');\nexec('ls');\n// curl http://x | bash\n"

    result = PlanValidator().validate(make_plan(_write("src/bad.js", content)))

    assert result.errors == [
        "Operation 0 (write): Contains Function() constructor - potential code injection risk",
        "Operation 0 (write): Contains exec() - potential command injection risk",
        "Operation 0 (write): Contains pipe to shell - potential RCE risk",
    ]


def test_errors_are_collected_across_operations(make_plan) -> None:
    payload = make_plan(
        _write("src/ok.ts"),
        _write("secrets.txt"),
        {"type": "patch", "path": "tools/x.py", "search": "a", "replace": "b"},
        _write("lib/shell.js", "require('child_process'); rm -rf /"),
    )

    result = PlanValidator().validate(payload)

    assert result.plan is None
    assert result.errors == [
        "Operation 1 (write): Path 'secrets.txt' matches blocked pattern (security risk)",
        "Operation 2 (patch): Path 'tools/x.py' is not in allowed directories",
        "Operation 3 (write): Contains dangerous file deletion commands",
    ]


def test_schema_errors_short_circuit_with_field_paths(make_plan) -> None:
    payload = make_plan({"type": "patch", "path": "src/a.ts", "search": "", "replace": "x"})
    payload["planId"] = "not-a-uuid"

    result = PlanValidator().validate(payload)

    assert not result.success
    assert "planId: Invalid plan ID format" in result.errors
    assert "operations.0.search: Search pattern required" in result.errors


def test_schema_rejects_empty_and_oversized_plans(make_plan) -> None:
    empty = make_plan()
    too_many = make_plan(*[_write(f"src/f{i}.ts") for i in range(101)])

    assert PlanValidator().validate(empty).errors == ["operations: Plan must contain at least one operation"]
    assert PlanValidator().validate(too_many).errors == ["operations: Plan exceeds maximum of 100 operations"]


def test_schema_enforces_operation_bounds(make_plan) -> None:
    payload = make_plan(
        _write("src/big.ts", "x" * 500_001),
        {"type": "package_install", "packages": ["Bad Name!"]},
        {"type": "package_remove", "packages": []},
        _write("src/white space.ts"),
    )

    errors = PlanValidator().validate(payload).errors

    assert "operations.0.content: Content exceeds 500KB limit" in errors
    assert "operations.1.packages.0: Invalid package name format" in errors
    assert "operations.2.packages: At least one package required" in errors
    assert "operations.3.path: Path contains invalid characters" in errors


def test_unknown_operation_type_is_rejected(make_plan) -> None:
    result = PlanValidator().validate(make_plan({"type": "delete", "path": "src/a.ts"}))

    assert not result.success
    assert result.errors and result.errors[0].startswith("operations.0")


def test_non_mapping_payload_is_rejected() -> None:
    result = PlanValidator().validate(["not", "a", "plan"])

    assert result.errors == [": Expected object, received list"]


def test_require_valid_raises_with_all_errors(make_plan) -> None:
    payload = make_plan(_write(".env"), _write("misc/file.txt"))

    with pytest.raises(PlanValidationError) as excinfo:
        PlanValidator().require_valid(payload)

    assert len(excinfo.value.errors) == 2


def test_require_valid_returns_plan(make_plan) -> None:
    plan_id = str(uuid.uuid4())
    plan = PlanValidator().require_valid(make_plan(_write("app/page.tsx"), plan_id=plan_id))

    assert plan.plan_id == plan_id
    assert plan.to_payload()["operations"][0]["overwrite"] is False


@pytest.mark.parametrize(
    "spelling",
    [
        lambda value: value.hex,
        lambda value: "{" + str(value) + "}",
        lambda value: value.urn,
        lambda value: str(value) + "\n",
    ],
    ids=["hex", "braced", "urn", "trailing-newline"],
)
def test_non_canonical_plan_ids_are_rejected(make_plan, spelling) -> None:
    payload = make_plan(_write("src/a.ts"), plan_id=spelling(uuid.uuid4()))

    result = PlanValidator().validate(payload)

    assert not result.success
    assert result.errors == ["planId: Invalid plan ID format"]


def test_plan_ids_are_normalised_to_lowercase(make_plan) -> None:
    plan_id = str(uuid.uuid4())

    plan = PlanValidator().require_valid(make_plan(_write("src/a.ts"), plan_id=plan_id.upper()))

    assert plan.plan_id == plan_id
