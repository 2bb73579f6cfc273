#!/usr/bin/env python
"""
CLI Tool
Talk to the Incident Desk backend, watch it, or run it.
"""
import argparse
import asyncio
import json
import os
import sys

from .api_client import DEFAULT_URL, ApiError, IncidentDeskClient
from .display import format_duration, history_lines, incident_line
from .refresh import RefreshTask


def print_json(data):
    """Pretty print JSON data."""
    print(json.dumps(data, indent=2, default=str))


def make_client(args) -> IncidentDeskClient:
    return IncidentDeskClient(args.url, api_key=args.api_key, token=args.token)


async def cmd_health(args):
    """Check backend health."""
    async with make_client(args) as client:
        print_json(await client.health())


async def cmd_stats(args):
    """Get dashboard statistics."""
    async with make_client(args) as client:
        stats = await client.get_stats()
    summary = stats["summary"]
    print(f"Incidents: {summary['totalIncidents']} total | {summary['openIncidents']} open | "
          f"{summary['investigatingIncidents']} investigating | {summary['resolvedIncidents']} resolved")
    print(f"Services:  {summary['enabledServices']}/{summary['totalServices']} enabled | Logs: {summary['totalLogs']}")


async def cmd_list_incidents(args):
    """List incidents."""
    async with make_client(args) as client:
        result = await client.list_incidents(
            status=args.status, severity=args.severity, category=args.category,
            service_id=args.service_id, limit=args.limit
        )

    if not result["incidents"]:
        print("No incidents found")
        return
    print(f"Found {result['count']} incidents:\n")
    for incident in result["incidents"]:
        print(incident_line(incident))


async def cmd_get_incident(args):
    """Get incident details."""
    async with make_client(args) as client:
        incident = await client.get_incident(args.incident_id)
    if args.json:
        print_json(incident)
        return

    print(incident_line(incident))
    summary = incident["summary"]
    print(f"   Logs: {summary['totalLogs']} ({summary['errorLogs']} errors, {summary['warningLogs']} warnings)")
    print(f"   Duration: {format_duration(summary['duration'])}")
    if incident.get("resolutionTime") is not None:
        print(f"   Resolved by {incident.get('resolvedBy')} in {format_duration(incident['resolutionTime'])}")


async def cmd_create_incident(args):
    """Report an incident."""
    async with make_client(args) as client:
        incident = await client.create_incident(
            args.title, description=args.description or "",
            severity=args.severity, category=args.category, serviceId=args.service_id
        )
    print(f"[OK] Incident created: {incident['id']}")


async def cmd_set_status(args):
    """Change an incident's status."""
    async with make_client(args) as client:
        incident = await client.update_status(args.incident_id, args.status, notes=args.notes)
    print(f"[OK] Incident {incident['id']} is now {incident['status']}")


async def cmd_approve(args):
    """Approve a suggested action."""
    async with make_client(args) as client:
        result = await client.approve_action(args.incident_id, action_id=args.action_id, action_index=args.index)
    print(f"[OK] {result['message']}")


async def cmd_history(args):
    """Show an incident's timeline."""
    async with make_client(args) as client:
        history = await client.get_history(args.incident_id)
    for line in history_lines(history):
        print(line)


async def cmd_logs(args):
    """Show an incident's logs."""
    async with make_client(args) as client:
        logs = await client.get_logs(args.incident_id)
    for log in logs:
        print(f"  {log['createdAt']} [{log['level'].upper():7}] {log['message']}")


async def cmd_services(args):
    """List registered services."""
    async with make_client(args) as client:
        result = await client.list_services()
    for service in result["services"]:
        state = "enabled" if service["enabled"] else "disabled"
        print(f"  {service['id'][:8]} {service['name']:24} {service['url']}{service['healthEndpoint']} ({state})")


async def cmd_add_service(args):
    """Register a service."""
    async with make_client(args) as client:
        service = await client.create_service(
            args.name, args.service_url, healthEndpoint=args.health_endpoint, category=args.category
        )
    print(f"[OK] Service registered: {service['id']}")


async def cmd_test_service(args):
    """Probe a service's health endpoint."""
    async with make_client(args) as client:
        result = await client.test_service(args.service_id)
    if result["healthy"]:
        print(f"[HEALTHY] {result['service']} in {format_duration(result['responseTime'])}")
    else:
        print(f"[UNHEALTHY] {result['service']}: {result.get('error')}")


async def cmd_health_check(args):
    """Run one detection pass over all enabled services."""
    async with make_client(args) as client:
        result = await client.run_health_checks()
    print(f"Checked {result['checked']} services; opened {len(result['incidentsOpened'])}, "
          f"auto-resolved {len(result['incidentsAutoResolved'])}")


async def cmd_analyze(args):
    """Run AI analysis for an incident."""
    async with make_client(args) as client:
        if args.rest:
            result = await client.get_analysis(args.incident_id)
        else:
            result = await client.analyze_incident(args.incident_id)

    analysis = result["aiAnalysis"]
    print(f"Provider: {analysis['provider']} | Logs analyzed: {result['logsAnalyzed']}")
    print(f"\nRoot Cause ({analysis['rootCauseProbability']:.0%}): {analysis['rootCause']}")
    print(f"\n{result['explanation']}")
    if analysis["suggestedActions"]:
        print("\nSuggested Actions:")
        for action in analysis["suggestedActions"]:
            flag = "needs approval" if action["requiresApproval"] else "informational"
            print(f"   - {action['id']} {action['action']}: {action['description']} ({flag})")


async def cmd_seed(args):
    """Seed demo services and incidents."""
    async with make_client(args) as client:
        result = await client.seed_demo(args.incidents)
    print(f"[OK] Seeded {len(result['services'])} services and {len(result['incidents'])} incidents")


async def cmd_watch(args):
    """Poll the dashboard stats until interrupted."""
    async with make_client(args) as client:
        def render(stats):
            summary = stats["summary"]
            print(f"open={summary['openIncidents']} investigating={summary['investigatingIncidents']} "
                  f"resolved={summary['resolvedIncidents']} services={summary['enabledServices']}")

        def report(error):
            print(f"[ERROR] {error}", file=sys.stderr)

        task = RefreshTask(client.get_stats, args.interval, on_result=render, on_error=report, name="watch")
        async with task:
            if args.cycles:
                while task.cycles < args.cycles:
                    await asyncio.sleep(0.05)
            else:
                await asyncio.Event().wait()


def cmd_serve(args):
    """Run the API server."""
    import uvicorn
    uvicorn.run("main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="CLI tool for the Incident Desk backend",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument("--url", default=os.getenv("INCIDENT_DESK_URL", DEFAULT_URL),
                        help=f"Backend URL (default: {DEFAULT_URL})")
    parser.add_argument("--api-key", default=os.getenv("ADMIN_API_KEY"), help="Admin API key")
    parser.add_argument("--token", help="Session token from /auth/login")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("health", help="Check backend health")
    subparsers.add_parser("stats", help="Show dashboard statistics")

    list_inc = subparsers.add_parser("list-incidents", help="List incidents")
    list_inc.add_argument("--status", choices=["open", "investigating", "resolved", "auto-resolved"])
    list_inc.add_argument("--severity", choices=["low", "medium", "high"])
    list_inc.add_argument("--category", choices=["performance", "database", "authentication", "network", "deployment"])
    list_inc.add_argument("--service-id")
    list_inc.add_argument("--limit", type=int, default=10, help="Max incidents to return")

    get_inc = subparsers.add_parser("get-incident", help="Get incident details")
    get_inc.add_argument("incident_id")
    get_inc.add_argument("--json", action="store_true", help="Print the raw response")

    create_inc = subparsers.add_parser("create-incident", help="Report an incident")
    create_inc.add_argument("title")
    create_inc.add_argument("--description")
    create_inc.add_argument("--severity", choices=["low", "medium", "high"], default="medium")
    create_inc.add_argument("--category", default="performance",
                            choices=["performance", "database", "authentication", "network", "deployment"])
    create_inc.add_argument("--service-id")

    set_status = subparsers.add_parser("set-status", help="Change incident status")
    set_status.add_argument("incident_id")
    set_status.add_argument("status", choices=["open", "investigating", "resolved"])
    set_status.add_argument("--notes")

    approve = subparsers.add_parser("approve", help="Approve a suggested action")
    approve.add_argument("incident_id")
    target = approve.add_mutually_exclusive_group(required=True)
    target.add_argument("--action-id")
    target.add_argument("--index", type=int)

    history = subparsers.add_parser("history", help="Show incident timeline")
    history.add_argument("incident_id")

    logs = subparsers.add_parser("logs", help="Show incident logs")
    logs.add_argument("incident_id")

    subparsers.add_parser("services", help="List services")

    add_service = subparsers.add_parser("add-service", help="Register a service")
    add_service.add_argument("name")
    add_service.add_argument("service_url")
    add_service.add_argument("--health-endpoint", default="/health")
    add_service.add_argument("--category", default="api",
                             choices=["api", "database", "cache", "queue", "storage", "monitoring", "other"])

    test_service = subparsers.add_parser("test-service", help="Probe a service's health endpoint")
    test_service.add_argument("service_id")

    subparsers.add_parser("health-check", help="Run one detection pass")

    analyze = subparsers.add_parser("analyze", help="Run AI analysis for an incident")
    analyze.add_argument("incident_id")
    analyze.add_argument("--rest", action="store_true", help="Use the REST endpoint instead of JSON-RPC")

    seed = subparsers.add_parser("seed", help="Seed demo data")
    seed.add_argument("--incidents", type=int, default=3)

    watch = subparsers.add_parser("watch", help="Poll dashboard stats")
    watch.add_argument("--interval", type=float, default=10.0, help="Seconds between refreshes")
    watch.add_argument("--cycles", type=int, default=0, help="Stop after N refreshes (0 = run until interrupted)")

    serve = subparsers.add_parser("serve", help="Run the API server")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true")

    return parser


COMMANDS = {
    "health": cmd_health,
    "stats": cmd_stats,
    "list-incidents": cmd_list_incidents,
    "get-incident": cmd_get_incident,
    "create-incident": cmd_create_incident,
    "set-status": cmd_set_status,
    "approve": cmd_approve,
    "history": cmd_history,
    "logs": cmd_logs,
    "services": cmd_services,
    "add-service": cmd_add_service,
    "test-service": cmd_test_service,
    "health-check": cmd_health_check,
    "analyze": cmd_analyze,
    "seed": cmd_seed,
    "watch": cmd_watch,
}


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1
    if args.command == "serve":
        return cmd_serve(args)

    try:
        asyncio.run(COMMANDS[args.command](args))
    except ApiError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
