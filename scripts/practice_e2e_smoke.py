#!/usr/bin/env python3
from __future__ import annotations

import asyncio
import importlib
import json
import os
import sys
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from fastapi.testclient import TestClient


@dataclass
class Check:
  name: str
  passed: bool
  detail: dict[str, Any] = field(default_factory=dict)
  error: str | None = None


def _expect(name: str, condition: bool, detail: dict[str, Any], error: str) -> Check:
  return Check(name=name, passed=condition, detail=detail, error=None if condition else error)


def run() -> int:
  repo_root = Path(__file__).resolve().parents[1]
  backend_dir = repo_root / "backend"
  if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

  scratch = Path(tempfile.mkdtemp(prefix="mindfulflow-smoke-"))
  # Run against a throwaway database unless one is supplied explicitly.
  os.environ.setdefault("DATABASE_URL", f"sqlite:///{scratch / 'smoke.sqlite'}")
  os.environ.setdefault("MINDFULFLOW_CACHE_PATH", str(scratch / "cache.json"))

  backend_module = importlib.import_module("main")
  backend_module = importlib.reload(backend_module)

  from copilot_core import ToolCall, ToolDispatcher, ToolRegistry
  from copilot_tools import PracticeToolset, register_tools

  stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
  checks: list[Check] = []

  with TestClient(backend_module.app) as client:
    registered = client.post(
      "/auth/register",
      json={"name": "Smoke Clinician", "email": f"smoke-{stamp}@example.com", "password": "smoke-secret"},
    )
    checks.append(_expect("Register", registered.status_code == 200, {"status": registered.status_code}, registered.text[:240]))
    if registered.status_code != 200:
      return _report(repo_root, checks)
    body = registered.json()
    headers = {"Authorization": f"Bearer {body['token']}"}
    user_id = body["user"]["id"]

    practice = client.get("/practice", headers=headers).json()
    checks.append(
      _expect(
        "Starter practice",
        len(practice.get("clients", [])) == 3,
        {"clients": [item["name"] for item in practice.get("clients", [])], "sync": practice.get("sync")},
        "New account was not seeded with starter clients.",
      )
    )

    created = client.post("/clients", headers=headers, json={"name": "Smoke Client", "diagnosis": "Smoke test"})
    client_id = created.json().get("id") if created.status_code == 200 else None
    checks.append(_expect("Create client", client_id is not None, {"status": created.status_code}, created.text[:240]))

    if client_id:
      note = client.post(f"/clients/{client_id}/notes", headers=headers, json={"content": "Smoke intake note."})
      checks.append(_expect("Add note", note.status_code == 200, note.json(), note.text[:240]))

      when = (datetime.now(timezone.utc) + timedelta(days=3)).replace(microsecond=0).isoformat()
      appt = client.post("/appointments", headers=headers, json={"clientId": client_id, "date": when})
      checks.append(_expect("Create appointment", appt.status_code == 200, appt.json(), appt.text[:240]))

      recap = client.get(f"/clients/{client_id}/recap", headers=headers).json()
      checks.append(_expect("Recap", recap.get("type") == "recall", recap, "Recap did not use the latest note."))

    workspace = backend_module.container.workspace_for(user_id)
    registry = ToolRegistry()
    register_tools(registry, PracticeToolset(workspace, backend_module.container.calendar))
    responses = asyncio.run(
      ToolDispatcher(registry).dispatch_all(
        [
          ToolCall(id="smoke-1", name="updateClientNote", args={"clientName": "Smoke", "content": "Voice follow-up."}),
          ToolCall(id="smoke-2", name="scheduleAppointment", args={"clientName": "Smoke", "dateTime": "2030-01-01T10:00:00Z"}),
        ]
      )
    )
    payloads = {response.id: response.as_payload() for response in responses}
    note_ok = payloads["smoke-1"]["result"]["status"] == "success"
    # Without calendar credentials scheduling must report an error rather than raise.
    schedule_expected = "success" if backend_module.container.calendar.configured else "error"
    schedule_ok = payloads["smoke-2"]["result"]["status"] == schedule_expected
    checks.append(_expect("Voice tools", note_ok and schedule_ok, payloads, "Tool responses did not match expectations."))

    sync = client.get("/sync", headers=headers).json()
    checks.append(_expect("Sync status", sync.get("pending") == 0, sync, "Writes are pending against the store."))

  return _report(repo_root, checks)


def _report(repo_root: Path, checks: list[Check]) -> int:
  passed = sum(1 for item in checks if item.passed)
  failed = len(checks) - passed
  timestamp = datetime.now(timezone.utc).isoformat()

  report_lines = [
    "# Practice E2E Smoke Report",
    "",
    f"- Timestamp (UTC): `{timestamp}`",
    f"- DATABASE_URL: `{os.getenv('DATABASE_URL')}`",
    f"- Total checks: `{len(checks)}`",
    f"- Passed: `{passed}`",
    f"- Failed: `{failed}`",
    "",
    "## Check Results",
    "",
  ]
  for item in checks:
    status = "PASS" if item.passed else "FAIL"
    report_lines.append(f"### {status} - {item.name}")
    if item.error:
      report_lines.append(f"- Error: `{item.error}`")
    report_lines.append("```json")
    report_lines.append(json.dumps(item.detail, indent=2, ensure_ascii=True))
    report_lines.append("```")
    report_lines.append("")

  report_path = repo_root / "PRACTICE_E2E_SMOKE_REPORT.md"
  report_path.write_text("\n".join(report_lines), encoding="utf-8")
  print(f"Wrote report: {report_path}")
  print(f"Passed {passed}/{len(checks)} checks.")

  return 0 if failed == 0 else 1


if __name__ == "__main__":
  raise SystemExit(run())
