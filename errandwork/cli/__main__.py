"""
ErrandWork CLI - scheduler client for marketplace maintenance.

Usage:
    errandwork sweep [--dry-run] [--json]
    errandwork expire-selections [--json]
    errandwork expire-jobs [--json]
    errandwork status [--json]
    errandwork rules [--json]

The backend URL and cron key come from --backend-url / --cron-key or the
ERRANDWORK_BACKEND_URL / ERRANDWORK_CRON_KEY environment variables.
"""

import argparse
import json
import logging
import os
import sys
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx

logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)

CRON_KEY_HEADER = "X-Cron-Key"


class CommandError(Exception):
    """A maintenance call failed; the message is shown to the operator."""


def validate_backend_url(url: Optional[str]) -> Optional[str]:
    """Accept https URLs, and plain http only for localhost."""
    if not url:
        return None
    parsed = urlparse(url)
    if parsed.scheme not in {"https", "http"}:
        logger.warning("Invalid backend_url scheme; only http/https allowed.")
        return None
    if not parsed.netloc:
        logger.warning("Invalid backend_url; missing host.")
        return None
    if parsed.scheme == "http" and parsed.hostname not in ("localhost", "127.0.0.1"):
        logger.warning("Refusing to send the cron key over plain HTTP to a remote host.")
        return None
    return url.rstrip("/")


class MaintenanceClient:
    """Thin httpx client for the /maintenance endpoints."""

    def __init__(
        self,
        backend_url: str,
        cron_key: str,
        timeout: float = 60.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.backend_url = backend_url
        self.cron_key = cron_key
        self.timeout = timeout
        self.transport = transport

    def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            with httpx.Client(
                base_url=self.backend_url,
                timeout=self.timeout,
                transport=self.transport,
                headers={CRON_KEY_HEADER: self.cron_key},
            ) as client:
                response = client.request(method, f"/maintenance{path}", **kwargs)
        except httpx.HTTPError as e:
            raise CommandError(f"Connection failed: {e}") from e

        if response.status_code >= 400:
            try:
                detail = response.json().get("detail")
            except ValueError:
                detail = response.text
            if isinstance(detail, dict):
                detail = detail.get("message") or detail
            raise CommandError(f"Backend returned {response.status_code}: {detail}")
        return response.json()

    def sweep(self, dry_run: bool = False) -> Dict[str, Any]:
        return self._request("POST", "/auto-release", json={"dry_run": dry_run})

    def expire_selections(self) -> Dict[str, Any]:
        return self._request("POST", "/expire-selections")

    def expire_jobs(self) -> Dict[str, Any]:
        return self._request("POST", "/expire-jobs")

    def health(self) -> Dict[str, Any]:
        return self._request("GET", "/health")

    def rules(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/rules")


def _print(args, data: Any, summary: str) -> None:
    if args.json:
        print(json.dumps(data, indent=2, default=str))
    else:
        print(summary)


def cmd_sweep(args, client: MaintenanceClient) -> int:
    """Run the auto-release sweep."""
    report = client.sweep(dry_run=args.dry_run)
    lines = [
        f"Auto-release sweep{' (dry run)' if report.get('dry_run') else ''}",
        f"  evaluated: {report.get('evaluated', 0)}",
        f"  released:  {report.get('released', 0)}",
        f"  failed:    {report.get('failed', 0)}",
        f"  skipped:   {report.get('skipped', 0)}",
        f"  settled:   {report.get('settled', 0)}",
    ]
    for action in report.get("actions", []):
        line = f"  - {action['action']:<9} booking={action['booking_id']} rule={action['rule_id']}"
        if action.get("error"):
            line += f" error={action['error']}"
        lines.append(line)
    _print(args, report, "\n".join(lines))
    return 1 if report.get("failed") else 0


def cmd_expire_selections(args, client: MaintenanceClient) -> int:
    result = client.expire_selections()
    _print(args, result, f"Expired selections: {result.get('expired', 0)} (failed: {result.get('failed', 0)})")
    return 1 if result.get("failed") else 0


def cmd_expire_jobs(args, client: MaintenanceClient) -> int:
    result = client.expire_jobs()
    _print(args, result, f"Expired jobs: {result.get('expired', 0)} (failed: {result.get('failed', 0)})")
    return 1 if result.get("failed") else 0


def cmd_status(args, client: MaintenanceClient) -> int:
    """Show held bookings and pending deadlines."""
    health = client.health()
    lines = [f"Status: {health.get('status', 'unknown')}"]
    for key, value in sorted((health.get("counts") or {}).items()):
        lines.append(f"  {key}: {value}")
    ledger = health.get("ledger")
    if ledger:
        mark = "ok" if ledger.get("balanced") else "MISMATCH"
        lines.append(f"  ledger: escrow={ledger.get('total_escrow')} held={ledger.get('total_held')} [{mark}]")
    _print(args, health, "\n".join(lines))
    return 0 if health.get("status") == "healthy" else 1


def cmd_rules(args, client: MaintenanceClient) -> int:
    rules = client.rules()
    lines = []
    for rule in rules:
        state = "on " if rule.get("enabled") else "off"
        lines.append(f"[{state}] {rule['priority']:>3} {rule['id']} ({rule['trigger']}) - {rule['name']}")
    _print(args, rules, "\n".join(lines) or "No rules configured")
    return 0


COMMANDS = {
    "sweep": cmd_sweep,
    "expire-selections": cmd_expire_selections,
    "expire-jobs": cmd_expire_jobs,
    "status": cmd_status,
    "rules": cmd_rules,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="errandwork",
        description="Marketplace maintenance client (auto-release, expiry sweeps)",
    )
    parser.add_argument("--backend-url", help="Backend base URL (or ERRANDWORK_BACKEND_URL)")
    parser.add_argument("--cron-key", help="Maintenance key (or ERRANDWORK_CRON_KEY)")
    parser.add_argument("--timeout", type=float, default=60.0, help="Request timeout in seconds")

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_sweep = subparsers.add_parser("sweep", help="Run the auto-release sweep")
    p_sweep.add_argument("--dry-run", action="store_true", help="Report what would be released")
    p_sweep.add_argument("--json", "-j", action="store_true")

    for name, help_text in (
        ("expire-selections", "Unpick selections past the acceptance window"),
        ("expire-jobs", "Expire open jobs past their expiry date"),
        ("status", "Show maintenance health"),
        ("rules", "List auto-release rules"),
    ):
        p = subparsers.add_parser(name, help=help_text)
        p.add_argument("--json", "-j", action="store_true")

    return parser


def main(argv: Optional[List[str]] = None, transport: Optional[httpx.BaseTransport] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    backend_url = validate_backend_url(args.backend_url or os.environ.get("ERRANDWORK_BACKEND_URL"))
    cron_key = args.cron_key or os.environ.get("ERRANDWORK_CRON_KEY")
    if not backend_url:
        logger.error("No valid backend URL configured (set ERRANDWORK_BACKEND_URL)")
        return 1
    if not cron_key:
        logger.error("No cron key configured (set ERRANDWORK_CRON_KEY)")
        return 1

    client = MaintenanceClient(backend_url, cron_key, timeout=args.timeout, transport=transport)
    try:
        return COMMANDS[args.command](args, client)
    except CommandError as e:
        logger.error(f"Command failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
