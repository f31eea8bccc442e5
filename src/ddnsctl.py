#!/usr/bin/env python3
"""
CLI tool for the DDNS Operator
Provides kubectl-like interface for managing Hostnames and their secrets
"""

import json
import os
import sys

import click
import requests
import yaml
from tabulate import tabulate

API_BASE_URL = os.getenv("DDNSCTL_SERVER", "http://localhost:8000/api/v1")


class DDNSOperatorCLI:
    """CLI client for the DDNS Operator API"""

    def __init__(self, base_url: str = API_BASE_URL):
        self.base_url = base_url.rstrip("/")

    def _make_request(self, method: str, endpoint: str, quiet_404=False, **kwargs):
        """Make HTTP request to the API"""
        url = f"{self.base_url}{endpoint}"
        try:
            response = requests.request(method, url, timeout=30, **kwargs)
            if quiet_404 and response.status_code == 404:
                return None
            response.raise_for_status()
            if response.status_code == 204 or not response.content:
                return {}
            return response.json()
        except requests.exceptions.RequestException as e:
            click.echo(f"Error: {e}", err=True)
            if hasattr(e, "response") and e.response is not None:
                try:
                    error_detail = e.response.json()
                    click.echo(f"Detail: {error_detail}", err=True)
                except (ValueError, json.JSONDecodeError):
                    click.echo(f"Response: {e.response.text}", err=True)
            return None

    def find_hostname(self, name: str, namespace: str, quiet_404=False):
        return self._make_request(
            "GET", f"/namespaces/{namespace}/hostnames/{name}", quiet_404=quiet_404
        )


def load_documents(filename):
    """Read every document from a YAML or JSON file"""
    with open(filename, "r") as f:
        if filename.endswith(".yaml") or filename.endswith(".yml"):
            return [doc for doc in yaml.safe_load_all(f) if doc]
        data = json.load(f)
    return data if isinstance(data, list) else [data]


def format_last_update(status):
    last_update = (status or {}).get("lastUpdate") or {}
    if not last_update:
        return "-", "-", "-"
    return (
        last_update.get("address") or "-",
        "Failed" if last_update.get("failed") else "OK",
        last_update.get("scheduledAt") or "-",
    )


@click.group()
@click.option(
    "--server",
    "-s",
    default=API_BASE_URL,
    show_default=True,
    help="Base URL of the operator API",
)
@click.pass_context
def cli(ctx, server):
    """DDNS Operator CLI - kubectl-like interface for dynamic DNS hostnames"""
    ctx.obj = DDNSOperatorCLI(server)


def _apply_hostname(client, doc):
    metadata = doc.get("metadata") or {}
    name = metadata.get("name")
    namespace = metadata.get("namespace", "default")
    spec = doc.get("spec") or {}

    existing = client.find_hostname(name, namespace, quiet_404=True)
    if existing:
        result = client._make_request(
            "PUT", f"/hostnames/{existing['id']}", json={"spec": spec}
        )
        if result:
            click.echo(
                f"hostname/{namespace}/{name} configured "
                f"(generation {result['generation']})"
            )
        return result is not None

    result = client._make_request(
        "POST",
        "/hostnames",
        json={"name": name, "namespace": namespace, "spec": spec},
    )
    if result:
        click.echo(f"hostname/{namespace}/{name} created (ID {result['id']})")
    return result is not None


def _apply_secret(client, doc):
    metadata = doc.get("metadata") or {}
    payload = {
        "name": metadata.get("name"),
        "namespace": metadata.get("namespace", "default"),
        "data": doc.get("data") or {},
        "stringData": doc.get("stringData") or {},
    }
    result = client._make_request("POST", "/secrets", json=payload)
    if result:
        click.echo(f"secret/{result['namespace']}/{result['name']} configured")
    return result is not None


@cli.command()
@click.option(
    "--filename",
    "-f",
    type=click.Path(exists=True),
    required=True,
    help="File to apply",
)
@click.pass_obj
def apply(client, filename):
    """Create or update Hostnames and Secrets from a YAML/JSON file"""
    ok = True
    for doc in load_documents(filename):
        kind = doc.get("kind", "Hostname")
        if kind == "Hostname":
            ok = _apply_hostname(client, doc) and ok
        elif kind == "Secret":
            ok = _apply_secret(client, doc) and ok
        else:
            click.echo(f"Error: unsupported kind {kind!r}", err=True)
            ok = False

    if not ok:
        sys.exit(1)


@cli.group()
def get():
    """List resources"""
    pass


@get.command("hostnames")
@click.option("--namespace", "-n", default=None, help="Only this namespace")
@click.option(
    "--output", "-o", type=click.Choice(["table", "json", "wide"]), default="table"
)
@click.pass_obj
def get_hostnames(client, namespace, output):
    """List hostnames"""
    params = {"namespace": namespace} if namespace else {}
    result = client._make_request("GET", "/hostnames", params=params)
    if result is None:
        sys.exit(1)

    if output == "json":
        click.echo(json.dumps(result, indent=2))
        return

    headers = ["NAMESPACE", "NAME", "HOSTNAME", "ADDRESS", "STATE", "LAST UPDATE"]
    if output == "wide":
        headers += ["ENDPOINT", "INTERVAL", "GENERATION", "NEXT CHECK"]

    rows = []
    for entry in result:
        spec = entry.get("spec") or {}
        address, state, scheduled_at = format_last_update(entry.get("status"))
        row = [
            entry["namespace"],
            entry["name"],
            spec.get("hostname", ""),
            address,
            state,
            scheduled_at,
        ]
        if output == "wide":
            row += [
                (spec.get("ddnsService") or {}).get("endpoint", ""),
                spec.get("checkIntervalMinutes") or "-",
                f"{entry['observed_generation']}/{entry['generation']}",
                entry.get("next_reconcile_time") or "-",
            ]
        rows.append(row)

    click.echo(tabulate(rows, headers=headers, tablefmt="plain"))


@cli.command()
@click.argument("name")
@click.option("--namespace", "-n", default="default")
@click.option("--output", "-o", type=click.Choice(["json", "yaml"]), default="yaml")
@click.pass_obj
def describe(client, name, namespace, output):
    """Describe a specific hostname"""
    result = client.find_hostname(name, namespace)
    if result is None:
        sys.exit(1)

    if output == "yaml":
        click.echo(yaml.dump(result, default_flow_style=False))
    else:
        click.echo(json.dumps(result, indent=2))


@cli.command()
@click.argument("name")
@click.option("--namespace", "-n", default="default")
@click.confirmation_option(prompt="Are you sure you want to delete this hostname?")
@click.pass_obj
def delete(client, name, namespace):
    """Delete a hostname (the DNS record is left as is)"""
    hostname = client.find_hostname(name, namespace)
    if hostname is None:
        sys.exit(1)

    result = client._make_request("DELETE", f"/hostnames/{hostname['id']}")
    if result is None:
        sys.exit(1)
    click.echo(f"hostname/{namespace}/{name} deleted")


@cli.command()
@click.argument("name")
@click.option("--namespace", "-n", default="default")
@click.pass_obj
def reconcile(client, name, namespace):
    """Trigger a reconciliation of a hostname now"""
    hostname = client.find_hostname(name, namespace)
    if hostname is None:
        sys.exit(1)

    result = client._make_request("POST", f"/hostnames/{hostname['id']}/reconcile")
    if result is None:
        sys.exit(1)
    click.echo(f"Reconciliation triggered for hostname/{namespace}/{name}")


@cli.command()
@click.argument("name")
@click.option("--namespace", "-n", default="default")
@click.option("--limit", "-l", default=10, help="Number of history entries to show")
@click.pass_obj
def history(client, name, namespace, limit):
    """Show reconciliation history for a hostname"""
    hostname = client.find_hostname(name, namespace)
    if hostname is None:
        sys.exit(1)

    result = client._make_request(
        "GET", f"/hostnames/{hostname['id']}/history", params={"limit": limit}
    )
    if result is None:
        sys.exit(1)

    headers = ["ID", "Generation", "Success", "Trigger", "Duration", "Message", "Time"]
    rows = []
    for entry in result:
        duration = entry.get("duration_seconds")
        rows.append(
            [
                entry["id"],
                entry["generation"],
                "✓" if entry["success"] else "✗",
                entry.get("trigger_reason") or "-",
                f"{duration:.2f}s" if duration is not None else "-",
                entry.get("error_message") or entry.get("message") or "",
                entry["reconcile_time"],
            ]
        )

    click.echo(tabulate(rows, headers=headers, tablefmt="grid"))


@cli.command("create-secret")
@click.argument("name")
@click.option("--namespace", "-n", default="default")
@click.option(
    "--from-literal",
    "literals",
    multiple=True,
    required=True,
    help="key=value pair to store, e.g. authToken=user:pass",
)
@click.pass_obj
def create_secret(client, name, namespace, literals):
    """Create or replace a secret"""
    string_data = {}
    for literal in literals:
        key, sep, value = literal.partition("=")
        if not sep or not key:
            raise click.BadParameter(
                f"{literal!r} is not in key=value form", param_hint="--from-literal"
            )
        string_data[key] = value

    result = client._make_request(
        "POST",
        "/secrets",
        json={"name": name, "namespace": namespace, "stringData": string_data},
    )
    if result is None:
        sys.exit(1)
    keys = ", ".join(result["keys"])
    click.echo(f"secret/{namespace}/{name} configured (keys: {keys})")


@cli.command()
@click.pass_obj
def providers(client):
    """List the DDNS providers the operator knows"""
    result = client._make_request("GET", "/providers")
    if result is None:
        sys.exit(1)

    rows = [
        [name, "yes" if name == result.get("default") else ""]
        for name in result.get("providers", [])
    ]
    click.echo(tabulate(rows, headers=["PROVIDER", "DEFAULT"], tablefmt="plain"))
    click.echo("Any other endpoint value is used as a dyndns2 API URL.")


if __name__ == "__main__":
    cli()
