from __future__ import annotations

import json

from .runtime import DeploymentRun


def render_json(run: DeploymentRun) -> str:
    return json.dumps(run.to_dict(), indent=2, ensure_ascii=False)


def render_text(run: DeploymentRun) -> str:
    """Human-readable run summary, one row per service in plan order."""
    rows = [("SERVICE", "STATUS", "CHANGED", "CHECKS", "TIME", "REASON")]
    for s in run.steps.values():
        changed = "-" if s.changed is None else ("yes" if s.changed else "no")
        elapsed = "-" if s.elapsed_s is None else f"{s.elapsed_s:.1f}s"
        name = s.service if s.required else f"{s.service} (optional)"
        rows.append((name, s.state.value, changed, str(s.attempts), elapsed, s.reason or ""))

    widths = [max(len(r[i]) for r in rows) for i in range(5)]
    lines = []
    for r in rows:
        cells = [r[i].ljust(widths[i]) for i in range(5)]
        lines.append("  ".join(cells + [r[5]]).rstrip())

    title = f"Deployment {run.id} of unit '{run.unit}'"
    if run.dry_run:
        title += " (dry run)"
    total = "-" if run.elapsed_s is None else f"{run.elapsed_s:.1f}s"
    return "\n".join([title, *lines, f"Result: {run.result.value} in {total}"])
