from __future__ import annotations

import json

from ab.memory.schema import ExecutionStatus, OperationStatus
from ab.planning.executor import NO_CHANGES_MESSAGE, PlanExecutor, apply_log_path
from ab.planning.schemas import Plan
from ab.workspace import single_workspace


def _plan(make_plan, *operations, plan_id=None) -> Plan:
    return Plan.model_validate(make_plan(*operations, plan_id=plan_id))


def test_execute_twice_returns_identical_result(make_plan, store, workspace) -> None:
    executor = PlanExecutor(store, single_workspace(workspace.root))
    plan = _plan(make_plan, {"type": "write", "path": "app/a.txt", "content": "first"})

    first = executor.execute(plan, "app-1")
    (workspace.root / "app" / "a.txt").write_text("edited by user", encoding="utf-8")
    second = executor.execute(plan, "app-1")

    assert first.status == "completed"
    assert first.to_dict() == second.to_dict()
    assert json.dumps(first.to_dict()) == json.dumps(second.to_dict())
    assert workspace.read_text("app/a.txt") == "edited by user"
    assert len(store.list_operations(plan.plan_id)) == 1


def test_id_spellings_share_one_execution(make_plan, store, workspace) -> None:
    executor = PlanExecutor(store, single_workspace(workspace.root))
    payload = make_plan({"type": "write", "path": "app/a.txt", "content": "first"})
    upper = dict(payload, planId=payload["planId"].upper())

    first = executor.execute(Plan.model_validate(payload), "app-1")
    second = executor.execute(Plan.model_validate(upper), "app-1")

    assert second.to_dict() == first.to_dict()
    assert len(store.list_executions()) == 1
    assert workspace.exists(apply_log_path(payload["planId"]))


def test_fail_fast_skips_remaining_operations(make_plan, store, workspace) -> None:
    executor = PlanExecutor(store, single_workspace(workspace.root))
    # the executor trusts its input; the escaping path simulates a plan that bypassed validation
    plan = _plan(
        make_plan,
        {"type": "write", "path": "src/one.ts", "content": "1"},
        {"type": "write", "path": "../escape.txt", "content": "2"},
        {"type": "write", "path": "src/three.ts", "content": "3"},
    )

    result = executor.execute(plan, "app-1")

    assert result.status == "partial"
    assert (result.succeeded_ops, result.failed_ops, result.skipped_ops) == (1, 1, 1)
    assert [operation.status for operation in result.operations] == ["success", "failed", "skipped"]
    assert "escapes the workspace" in (result.operations[1].error or "")
    assert result.operations[2].error is None
    assert workspace.exists("src/one.ts")
    assert not workspace.exists("src/three.ts")


def test_first_operation_failure_marks_plan_failed(make_plan, store, workspace) -> None:
    executor = PlanExecutor(store, single_workspace(workspace.root))
    plan = _plan(
        make_plan,
        {"type": "patch", "path": "src/missing.ts", "search": "a", "replace": "b"},
        {"type": "write", "path": "src/after.ts", "content": "x"},
    )

    result = executor.execute(plan, "app-1")

    assert result.status == "failed"
    assert result.operations[0].error == "File not found: src/missing.ts"
    assert [operation.status for operation in result.operations] == ["failed", "skipped"]
    execution = store.get_execution(plan.plan_id)
    assert execution is not None
    assert execution.status is ExecutionStatus.FAILED
    assert execution.completed_at is not None


def test_patch_replaces_exact_text(make_plan, store, workspace) -> None:
    workspace.write_text("src/server.ts", "const PORT = 3000\nlisten(PORT)\n")
    executor = PlanExecutor(store, single_workspace(workspace.root))
    plan = _plan(
        make_plan,
        {"type": "patch", "path": "src/server.ts", "search": "const PORT = 3000", "replace": "const PORT = 8080"},
    )

    result = executor.execute(plan, "app-1")

    content = workspace.read_text("src/server.ts")
    assert result.ok
    assert content == "const PORT = 8080\nlisten(PORT)\n"
    assert "3000" not in content
    assert result.operations[0].result == {
        "operation": "patch",
        "path": "src/server.ts",
        "occurrences": 1,
        "searchPattern": "const PORT = 3000",
        "sizeDiff": 0,
    }


def test_patch_replaces_only_first_occurrence(make_plan, store, workspace) -> None:
    workspace.write_text("src/a.ts", "x = 1; x = 1;")
    executor = PlanExecutor(store, single_workspace(workspace.root))

    result = executor.execute(
        _plan(make_plan, {"type": "patch", "path": "src/a.ts", "search": "x = 1", "replace": "y = 2"}), "app"
    )

    assert workspace.read_text("src/a.ts") == "y = 2; x = 1;"
    assert result.operations[0].result["occurrences"] == 2


def test_patch_missing_pattern_fails(make_plan, store, workspace) -> None:
    workspace.write_text("src/a.ts", "hello")
    executor = PlanExecutor(store, single_workspace(workspace.root))

    result = executor.execute(
        _plan(make_plan, {"type": "patch", "path": "src/a.ts", "search": "goodbye", "replace": "x"}), "app"
    )

    assert result.status == "failed"
    assert result.operations[0].error == "Pattern 'goodbye...' not found in src/a.ts"
    assert workspace.read_text("src/a.ts") == "hello"


def test_write_replaces_existing_file_and_continues(make_plan, store, workspace) -> None:
    workspace.write_text("app/a.txt", "old")
    executor = PlanExecutor(store, single_workspace(workspace.root))
    plan = _plan(
        make_plan,
        {"type": "write", "path": "app/a.txt", "content": "new\ncontent"},
        {"type": "write", "path": "app/b.txt", "content": "b"},
    )

    result = executor.execute(plan, "app")

    assert result.status == "completed"
    assert result.operations[0].result == {"operation": "write", "path": "app/a.txt", "size": 11, "lines": 2}
    assert workspace.read_text("app/a.txt") == "new\ncontent"
    assert workspace.read_text("app/b.txt") == "b"


def test_package_operation_without_manifest_fails_fast(make_plan, store, workspace) -> None:
    executor = PlanExecutor(store, single_workspace(workspace.root))
    plan = _plan(
        make_plan,
        {"type": "package_install", "packages": ["react"]},
        {"type": "write", "path": "src/after.ts", "content": "x"},
    )

    result = executor.execute(plan, "app")

    assert result.status == "failed"
    assert result.operations[0].error == "File not found: package.json"
    assert [operation.status for operation in result.operations] == ["failed", "skipped"]
    assert not workspace.exists("src/after.ts")


def test_patch_on_missing_file_stops_later_operations(make_plan, store, workspace) -> None:
    executor = PlanExecutor(store, single_workspace(workspace.root))
    plan = _plan(
        make_plan,
        {"type": "write", "path": "src/first.ts", "content": "1"},
        {"type": "patch", "path": "src/absent.ts", "search": "a", "replace": "b"},
        {"type": "package_remove", "packages": ["react"]},
    )

    result = executor.execute(plan, "app")

    assert result.status == "partial"
    assert result.operations[1].error == "File not found: src/absent.ts"
    assert [operation.status for operation in result.operations] == ["success", "failed", "skipped"]


def test_package_operations_update_manifest(make_plan, store, workspace) -> None:
    workspace.write_text("package.json", json.dumps({"name": "demo", "dependencies": {"react": "^18.0.0"}}))
    executor = PlanExecutor(store, single_workspace(workspace.root))
    plan = _plan(
        make_plan,
        {"type": "package_install", "packages": ["react", "zustand"]},
        {"type": "package_install", "packages": ["vitest"], "dev": True},
        {"type": "package_remove", "packages": ["react"]},
    )

    result = executor.execute(plan, "app")

    manifest = json.loads(workspace.read_text("package.json"))
    assert result.ok
    assert manifest["dependencies"] == {"zustand": "latest"}
    assert manifest["devDependencies"] == {"vitest": "latest"}
    assert result.operations[0].result == {
        "operation": "package_install",
        "modified": ["zustand"],
        "target": "dependencies",
        "path": "package.json",
    }
    assert workspace.read_text("package.json").endswith("\n")


def test_package_install_without_changes_is_a_no_op(make_plan, store, workspace) -> None:
    original = json.dumps({"dependencies": {"react": "18.2.0"}})
    workspace.write_text("package.json", original)
    executor = PlanExecutor(store, single_workspace(workspace.root))

    result = executor.execute(_plan(make_plan, {"type": "package_install", "packages": ["react"]}), "app")

    assert result.operations[0].result == {
        "operation": "package_install",
        "modified": [],
        "message": NO_CHANGES_MESSAGE,
    }
    assert workspace.read_text("package.json") == original


def test_malformed_manifest_fails_operation(make_plan, store, workspace) -> None:
    workspace.write_text("package.json", "{not json")
    executor = PlanExecutor(store, single_workspace(workspace.root))

    result = executor.execute(_plan(make_plan, {"type": "package_remove", "packages": ["react"]}), "app")

    assert result.status == "failed"
    assert (result.operations[0].error or "").startswith("Malformed package.json")


def test_apply_log_records_every_operation(make_plan, store, workspace) -> None:
    executor = PlanExecutor(store, single_workspace(workspace.root))
    plan = _plan(
        make_plan,
        {"type": "write", "path": "src/a.ts", "content": "a"},
        {"type": "patch", "path": "src/a.ts", "search": "zzz", "replace": "b"},
    )

    result = executor.execute(plan, "app-42")

    assert result.log_path == apply_log_path(plan.plan_id) == f"plan/apply-log-{plan.plan_id}.json"
    log = json.loads(workspace.read_text(result.log_path))
    assert log["planId"] == plan.plan_id
    assert log["sessionId"] == plan.session_id
    assert log["appId"] == "app-42"
    assert log["status"] == "partial"
    assert log["summary"]["total"] == 2
    assert log["summary"]["succeeded"] == 1
    assert log["summary"]["failed"] == 1
    assert log["operations"][0]["operation"]["path"] == "src/a.ts"
    assert log["operations"][1]["status"] == "failed"


def test_apply_log_failure_is_not_fatal(make_plan, store, workspace) -> None:
    # a directory where the log file should go makes the write fail
    executor = PlanExecutor(store, single_workspace(workspace.root))
    plan = _plan(make_plan, {"type": "write", "path": "src/a.ts", "content": "a"})
    (workspace.root / apply_log_path(plan.plan_id)).mkdir(parents=True)

    result = executor.execute(plan, "app")

    assert result.ok
    assert result.log_path is None


def test_operation_records_are_persisted_in_order(make_plan, store, workspace) -> None:
    executor = PlanExecutor(store, single_workspace(workspace.root))
    plan = _plan(
        make_plan,
        {"type": "write", "path": "src/a.ts", "content": "a"},
        {"type": "write", "path": "src/b.ts", "content": "b"},
    )

    executor.execute(plan, "app")

    records = store.list_operations(plan.plan_id)
    assert [record.index for record in records] == [0, 1]
    assert all(record.status is OperationStatus.SUCCESS for record in records)
    assert records[1].params["path"] == "src/b.ts"


def test_load_result_unknown_plan_raises(store, workspace) -> None:
    executor = PlanExecutor(store, single_workspace(workspace.root))

    try:
        executor.load_result("missing")
    except KeyError as error:
        assert "missing" in str(error)
    else:  # pragma: no cover - defensive
        raise AssertionError("expected KeyError")
