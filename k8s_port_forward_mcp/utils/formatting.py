from __future__ import annotations

import json
from typing import Any, Dict, List, Sequence

import yaml

from .models import ServiceMap, StartReport
from .supervisor import ManagedForward

CODE_FENCE = "```"


def to_json_text(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False, sort_keys=False)


def to_yaml_text(value: Any) -> str:
    return yaml.safe_dump(value, sort_keys=False, allow_unicode=True)


def namespaces_text(namespaces: Sequence[str]) -> str:
    if not namespaces:
        return "No namespaces found."
    return "Namespaces:\n" + "\n".join(f"- {ns}" for ns in namespaces)


def services_payload(services: ServiceMap) -> Dict[str, Dict[str, Dict[str, str]]]:
    return {
        name: {
            env: {
                "namespace": identity.namespace,
                "pod": identity.pod_name,
                "service": identity.full_service_name,
            }
            for env, identity in services[name].items()
        }
        for name in sorted(services)
    }


def services_text(services: ServiceMap, output: str = "text") -> str:
    fmt = (output or "text").lower()
    if fmt == "json":
        return to_json_text(services_payload(services))
    if fmt in ("yaml", "yml"):
        return to_yaml_text(services_payload(services))

    if not services:
        return "No services found."
    lines: List[str] = ["Services (shortName -> environments and namespace):"]
    for name in sorted(services):
        envs = ", ".join(f"{env} (ns: {identity.namespace})" for env, identity in services[name].items())
        lines.append(f"- {name}: {envs}")
    return "\n".join(lines)


def start_report_text(report: StartReport) -> str:
    if report.errors:
        return "Validation/resolution errors:\n" + "\n".join(report.errors)

    summary = "\n".join(f"- {s.label} -> {s.local_url} (pod {s.pod_name})" for s in report.sessions)
    commands = "\n".join(report.commands)
    return (
        f"Port forwarding started for {len(report.sessions)} service(s):\n{summary}\n\n"
        f"To run in a VS Code terminal instead, use:\n{CODE_FENCE}\n{commands}\n{CODE_FENCE}"
    )


def stop_text(count: int) -> str:
    if count > 0:
        return f"Stopped {count} port-forward process(es)."
    return "No active port-forwards to stop."


def active_forwards_text(forwards: Sequence[ManagedForward]) -> str:
    if not forwards:
        return "No active port-forwards."
    lines = [f"Active port-forwards ({len(forwards)}):"]
    for f in forwards:
        s = f.session
        lines.append(
            f"- {s.label} -> {s.local_url} (pod {s.pod_name}, ns: {s.namespace}, "
            f"remote port {s.remote_port}, pid {f.pid}, since {f.started_at})"
        )
    return "\n".join(lines)
