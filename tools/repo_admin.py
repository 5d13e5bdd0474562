#!/usr/bin/env python3
"""Repository administration CLI for the offset permanence curation repo.

This CLI provides a single command surface for the curation workflows:
- local storage setup and dataset version registration
- field standardization against the reference tables
- combining standardized fields into the master table
- descriptive study summaries
- promoting reviewed triage sheets into the alias tables
- local diagnostics
"""

from __future__ import annotations

import argparse
import csv
import hashlib
import json
import os
import shutil
import subprocess
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


REPO_ROOT = Path(__file__).resolve().parents[1]
CURATION_DIR = REPO_ROOT / "jobs" / "curation"
CURATION_SRC_DIR = CURATION_DIR / "src"
LOCAL_STORAGE_ROOT_DEFAULT = REPO_ROOT / "local_store"
DATASET_SUFFIXES = {".csv", ".xlsx"}


@dataclass
class CommandSpec:
    cmd: list[str]
    cwd: Path
    env: dict[str, str] | None = None


def _print_header(message: str) -> None:
    print(f"\n==> {message}", flush=True)


def _run_command(spec: CommandSpec, dry_run: bool = False) -> int:
    cmd_display = " ".join(spec.cmd)
    print(f"$ (cd {spec.cwd} && {cmd_display})", flush=True)
    if dry_run:
        return 0

    env = os.environ.copy()
    if spec.env:
        env.update(spec.env)

    process = subprocess.run(spec.cmd, cwd=spec.cwd, env=env)
    return process.returncode


def _resolve_local_storage_root(value: str | None = None) -> Path:
    root = Path(value or os.getenv("LOCAL_STORAGE_ROOT") or str(LOCAL_STORAGE_ROOT_DEFAULT)).expanduser().resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _workflow_env(extra: dict[str, str] | None = None) -> dict[str, str]:
    env = {
        "LOCAL_STORAGE_ROOT": str(_resolve_local_storage_root()),
        "R2_BUCKET": "__local__",
    }
    if extra:
        env.update(extra)
    return env


def _resolve_executable(executable: str) -> str:
    path = Path(executable)
    if path.is_absolute():
        return str(path)
    if "/" in executable:
        candidate = (REPO_ROOT / path).resolve()
        if candidate.exists():
            return str(candidate)
    return executable


def _python_module_spec(
    module: str,
    args: list[str],
    cwd: Path,
    python_exec: str,
    src_dir: Path | None = None,
    extra_env: dict[str, str] | None = None,
) -> CommandSpec:
    python_exec = _resolve_executable(python_exec)
    env: dict[str, str] = {}
    if src_dir is not None:
        existing = os.getenv("PYTHONPATH", "")
        src = str(src_dir)
        env["PYTHONPATH"] = f"{src}{os.pathsep}{existing}" if existing else src
    if extra_env:
        env.update(extra_env)
    return CommandSpec(cmd=[python_exec, "-m", module, *args], cwd=cwd, env=env or None)


def _curation_spec(module: str, module_args: list[str], python_exec: str) -> CommandSpec:
    return _python_module_spec(
        module=f"curation.{module}",
        args=module_args,
        cwd=CURATION_DIR,
        python_exec=python_exec,
        src_dir=CURATION_SRC_DIR,
        extra_env=_workflow_env(),
    )


def _source_args(args: argparse.Namespace) -> list[str]:
    module_args: list[str] = []
    if args.version_id:
        module_args.extend(["--version_id", args.version_id])
    if args.source_path:
        module_args.extend(["--source_path", args.source_path])
    if getattr(args, "sheet", None):
        module_args.extend(["--sheet", args.sheet])
    return module_args


def build_standardize_spec(args: argparse.Namespace) -> CommandSpec:
    module_args = _source_args(args)
    if args.fields:
        module_args.extend(["--fields", *args.fields])
    if args.reference_dir:
        module_args.extend(["--reference_dir", args.reference_dir])
    if args.output_prefix:
        module_args.extend(["--output_prefix", args.output_prefix])
    return _curation_spec("standardize", module_args, args.python)


def build_combine_spec(args: argparse.Namespace) -> CommandSpec:
    module_args = _source_args(args)
    if args.fields:
        module_args.extend(["--fields", *args.fields])
    if args.input_prefix:
        module_args.extend(["--input_prefix", args.input_prefix])
    if args.output_prefix:
        module_args.extend(["--output_prefix", args.output_prefix])
    return _curation_spec("combine", module_args, args.python)


def build_summarize_spec(args: argparse.Namespace) -> CommandSpec:
    module_args = _source_args(args)
    if args.output_prefix:
        module_args.extend(["--output_prefix", args.output_prefix])
    return _curation_spec("summarize", module_args, args.python)


def build_promote_spec(args: argparse.Namespace) -> CommandSpec:
    module_args: list[str] = []
    if args.triage_path:
        module_args.extend(["--triage_path", *args.triage_path])
    if args.triage_key:
        module_args.extend(["--triage_key", *args.triage_key])
    module_args.extend(["--reference_dir", args.reference_dir])
    if getattr(args, "auto_approve_all", False):
        module_args.append("--auto_approve_all")
    return _curation_spec("promote", module_args, args.python)


def build_test_spec(args: argparse.Namespace) -> CommandSpec:
    return CommandSpec(
        cmd=[_resolve_executable(args.python), "-m", "pytest", "-v", "--tb=short"],
        cwd=CURATION_DIR,
        env={"PYTHONPATH": str(CURATION_SRC_DIR)},
    )


def _component_requirements() -> dict[str, dict[str, list[str]]]:
    return {
        "curation": {
            "env": [],
            "bins": ["python3"],
            "python_imports": ["pandas", "openpyxl", "boto3"],
        },
        "tests": {
            "env": [],
            "bins": ["python3"],
            "python_imports": ["pytest"],
        },
        "remote": {
            "env": ["R2_ENDPOINT", "R2_BUCKET", "R2_ACCESS_KEY_ID", "R2_SECRET_ACCESS_KEY"],
            "bins": [],
            "python_imports": ["boto3"],
        },
    }


def _check_python_imports(imports: list[str], python_exec: str) -> tuple[bool, list[str]]:
    if not imports:
        return True, []

    check_lines = [
        "import importlib.util",
        f"mods = {imports!r}",
        "missing = [m for m in mods if importlib.util.find_spec(m) is None]",
        "print('\\n'.join(missing))",
        "raise SystemExit(1 if missing else 0)",
    ]

    proc = subprocess.run(
        [python_exec, "-c", "\n".join(check_lines)],
        capture_output=True,
        text=True,
    )
    missing = [line.strip() for line in proc.stdout.splitlines() if line.strip()]
    return proc.returncode == 0, missing


def cmd_status(_: argparse.Namespace) -> int:
    _print_header("Repository status")
    local_root = _resolve_local_storage_root()
    local_files = [p for p in local_root.rglob("*") if p.is_file()]
    print(f"local_storage_root={local_root}")
    print(f"local_storage_files={len(local_files)}")
    print(f"registered_versions={len(_load_versions(local_root))}")
    curated = local_root / "curated"
    runs = sorted(p.name for p in curated.iterdir() if p.is_dir()) if curated.exists() else []
    print(f"curated_outputs={json.dumps(runs)}")
    return 0


def cmd_doctor(args: argparse.Namespace) -> int:
    requirements = _component_requirements()
    components = list(requirements.keys()) if args.component == "all" else [args.component]
    local_root = _resolve_local_storage_root()
    print(f"[info] local storage root: {local_root}")

    failures = 0
    for component in components:
        req = requirements[component]
        _print_header(f"doctor::{component}")

        for env_name in req["env"]:
            if os.getenv(env_name):
                print(f"[ok] env {env_name}")
            else:
                print(f"[missing] env {env_name}")
                failures += 1

        for binary in req["bins"]:
            if shutil.which(binary):
                print(f"[ok] bin {binary}")
            else:
                print(f"[missing] bin {binary}")
                failures += 1

        ok_imports, missing_imports = _check_python_imports(req["python_imports"], python_exec=args.python)
        if ok_imports:
            if req["python_imports"]:
                print(f"[ok] python imports ({len(req['python_imports'])})")
        else:
            for name in missing_imports:
                print(f"[missing] python import {name}")
            failures += len(missing_imports)

    return 1 if failures else 0


def cmd_local_init(args: argparse.Namespace) -> int:
    root = _resolve_local_storage_root(args.local_root)
    for rel in ["raw", "curated", "meta"]:
        (root / rel).mkdir(parents=True, exist_ok=True)
    print(f"initialized_local_storage={root}")
    return 0


def _dataset_metadata(path: Path) -> tuple[int | None, list[str], str]:
    sha = hashlib.sha256(path.read_bytes()).hexdigest()
    if path.suffix.lower() != ".csv":
        return None, [], sha
    row_count = 0
    with path.open("r", encoding="utf-8", newline="") as handle:
        reader = csv.reader(handle)
        columns = next(reader, [])
        for _ in reader:
            row_count += 1
    return row_count, columns, sha


def _load_versions(root: Path) -> list[dict[str, Any]]:
    meta_path = root / "meta" / "versions.json"
    if not meta_path.exists():
        return []
    loaded = json.loads(meta_path.read_text(encoding="utf-8"))
    return loaded if isinstance(loaded, list) else []


def cmd_local_register_version(args: argparse.Namespace) -> int:
    root = _resolve_local_storage_root(args.local_root)
    dataset_path = Path(args.dataset_path).expanduser().resolve()
    if not dataset_path.exists():
        print(f"Dataset not found: {dataset_path}", file=sys.stderr)
        return 2
    suffix = dataset_path.suffix.lower()
    if suffix not in DATASET_SUFFIXES:
        print(f"Unsupported dataset format: {dataset_path.name}", file=sys.stderr)
        return 2

    row_count, columns, sha = _dataset_metadata(dataset_path)
    target_key = Path("raw") / args.version_id / f"dataset{suffix}"
    target_dir = (root / target_key).parent
    target_dir.mkdir(parents=True, exist_ok=True)
    for stale in DATASET_SUFFIXES - {suffix}:
        (target_dir / f"dataset{stale}").unlink(missing_ok=True)
    shutil.copy2(dataset_path, root / target_key)

    records = [item for item in _load_versions(root) if item.get("version_id") != args.version_id]
    records.append(
        {
            "version_id": args.version_id,
            "registered_at": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "source_dataset_path": str(dataset_path),
            "local_storage_key": target_key.as_posix(),
            "dataset_sha256": sha,
            "row_count": row_count,
            "columns": columns,
        }
    )
    meta_path = root / "meta" / "versions.json"
    meta_path.parent.mkdir(parents=True, exist_ok=True)
    meta_path.write_text(json.dumps(records, indent=2), encoding="utf-8")

    print(
        json.dumps(
            {
                "version_id": args.version_id,
                "local_storage_root": str(root),
                "dataset_key": target_key.as_posix(),
                "dataset_sha256": sha,
                "row_count": row_count,
                "column_count": len(columns),
            },
            indent=2,
        )
    )
    return 0


def cmd_local_list_versions(args: argparse.Namespace) -> int:
    root = _resolve_local_storage_root(args.local_root)
    print(json.dumps(_load_versions(root), indent=2))
    return 0


def _require_source(args: argparse.Namespace) -> bool:
    if args.version_id or args.source_path:
        return True
    print("Provide either --version-id or --source-path", file=sys.stderr)
    return False


def cmd_curation_standardize(args: argparse.Namespace) -> int:
    if not _require_source(args):
        return 2
    _print_header(f"curation standardize version_id={args.version_id} fields={args.fields or ['all']}")
    return _run_command(build_standardize_spec(args), dry_run=args.dry_run)


def cmd_curation_combine(args: argparse.Namespace) -> int:
    if not args.version_id and not args.input_prefix:
        print("Provide either --version-id or --input-prefix", file=sys.stderr)
        return 2
    _print_header(f"curation combine version_id={args.version_id}")
    return _run_command(build_combine_spec(args), dry_run=args.dry_run)


def cmd_curation_summarize(args: argparse.Namespace) -> int:
    if not _require_source(args):
        return 2
    _print_header(f"curation summarize version_id={args.version_id}")
    return _run_command(build_summarize_spec(args), dry_run=args.dry_run)


def cmd_curation_promote(args: argparse.Namespace) -> int:
    if not args.triage_path and not args.triage_key:
        print("Provide either --triage-path or --triage-key", file=sys.stderr)
        return 2
    _print_header(f"curation promote reference_dir={args.reference_dir}")
    return _run_command(build_promote_spec(args), dry_run=args.dry_run)


def cmd_curation_test(args: argparse.Namespace) -> int:
    _print_header("curation tests")
    return _run_command(build_test_spec(args), dry_run=args.dry_run)


def _add_source_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--version-id")
    parser.add_argument("--source-path", help="Local CSV/XLSX instead of raw/<version-id>/dataset.*")
    parser.add_argument("--sheet")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Offset permanence curation administrative CLI",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    sub = parser.add_subparsers(dest="command", required=True)

    p_status = sub.add_parser("status", help="Show local storage status")
    p_status.set_defaults(func=cmd_status)

    p_doctor = sub.add_parser("doctor", help="Check environment/tooling readiness")
    p_doctor.add_argument("--component", choices=["all", "curation", "tests", "remote"], default="all")
    p_doctor.add_argument("--python", default=sys.executable, help="Python executable for import checks")
    p_doctor.set_defaults(func=cmd_doctor)

    p_local = sub.add_parser("local", help="Local storage setup and version registration")
    local_sub = p_local.add_subparsers(dest="local_cmd", required=True)

    p_local_init = local_sub.add_parser("init", help="Initialize local storage directories")
    p_local_init.add_argument("--local-root")
    p_local_init.set_defaults(func=cmd_local_init)

    p_local_register = local_sub.add_parser("register-version", help="Register a dataset version in local storage")
    p_local_register.add_argument("--version-id", required=True)
    p_local_register.add_argument("--dataset-path", default=str(REPO_ROOT / "dataset.xlsx"))
    p_local_register.add_argument("--local-root")
    p_local_register.set_defaults(func=cmd_local_register_version)

    p_local_versions = local_sub.add_parser("list-versions", help="List local registered versions")
    p_local_versions.add_argument("--local-root")
    p_local_versions.set_defaults(func=cmd_local_list_versions)

    p_curation = sub.add_parser("curation", help="Run curation workflow commands")
    curation_sub = p_curation.add_subparsers(dest="curation_cmd", required=True)

    p_standardize = curation_sub.add_parser("standardize", help="Standardize fields against reference tables")
    _add_source_arguments(p_standardize)
    p_standardize.add_argument("--fields", nargs="*")
    p_standardize.add_argument("--reference-dir")
    p_standardize.add_argument("--output-prefix")
    p_standardize.add_argument("--python", default=sys.executable)
    p_standardize.add_argument("--dry-run", action="store_true")
    p_standardize.set_defaults(func=cmd_curation_standardize)

    p_combine = curation_sub.add_parser("combine", help="Combine standardized fields into one long table")
    _add_source_arguments(p_combine)
    p_combine.add_argument("--fields", nargs="*")
    p_combine.add_argument("--input-prefix")
    p_combine.add_argument("--output-prefix")
    p_combine.add_argument("--python", default=sys.executable)
    p_combine.add_argument("--dry-run", action="store_true")
    p_combine.set_defaults(func=cmd_curation_combine)

    p_summarize = curation_sub.add_parser("summarize", help="Write descriptive study summaries")
    _add_source_arguments(p_summarize)
    p_summarize.add_argument("--output-prefix")
    p_summarize.add_argument("--python", default=sys.executable)
    p_summarize.add_argument("--dry-run", action="store_true")
    p_summarize.set_defaults(func=cmd_curation_summarize)

    p_promote = curation_sub.add_parser("promote", help="Merge approved triage rows into alias tables")
    p_promote.add_argument("--triage-path", nargs="*")
    p_promote.add_argument("--triage-key", nargs="*")
    p_promote.add_argument("--reference-dir", required=True)
    p_promote.add_argument("--auto-approve-all", action="store_true")
    p_promote.add_argument("--python", default=sys.executable)
    p_promote.add_argument("--dry-run", action="store_true")
    p_promote.set_defaults(func=cmd_curation_promote)

    p_test = curation_sub.add_parser("test", help="Run curation job tests")
    p_test.add_argument("--python", default=sys.executable)
    p_test.add_argument("--dry-run", action="store_true")
    p_test.set_defaults(func=cmd_curation_test)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        return int(args.func(args))
    except RuntimeError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
