"""Rebuild the service-owner registry from the public services directory."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import httpx
import structlog

from depcensus.core.github import parse_repo_ref

log = structlog.get_logger("depcensus.service_owners")

SERVICES_URL = "https://govuk-digital-services.herokuapp.com/data.json"


async def fetch_services(client: httpx.AsyncClient, url: str = SERVICES_URL) -> list[dict[str, Any]]:
    response = await client.get(url)
    response.raise_for_status()
    data = response.json()
    services = data.get("services") if isinstance(data, dict) else None
    if not isinstance(services, list):
        raise ValueError(f"{url}: response has no 'services' list")
    return services


def _source_repo(service: dict[str, Any]) -> tuple[str, str] | None:
    links = service.get("sourceCode")
    if not links or not isinstance(links, list):
        return None
    first = links[0]
    href = first.get("href") if isinstance(first, dict) else None
    if not href:
        return None
    try:
        return parse_repo_ref(href)
    except ValueError:
        log.warning("service_owners.bad_source_url", service=service.get("name"), href=href)
        return None


def build_service_owners(
    services: list[dict[str, Any]], existing: dict[str, dict[str, Any]] | None = None
) -> dict[str, dict[str, Any]]:
    """Map ``owner -> repo -> service`` from each service's first source link.

    Rebuilt from scratch every time; *existing* is only compared against
    to report how many entries changed.
    """
    existing = existing or {}
    owners: dict[str, dict[str, Any]] = {}
    changed = 0
    for service in services:
        ref = _source_repo(service)
        if ref is None:
            continue
        owner, repo = ref
        previous = existing.get(owner, {}).get(repo)
        if previous != service:
            changed += 1
        owners.setdefault(owner, {})[repo] = service
    log.info("service_owners.built", owners=len(owners), changed=changed)
    return owners


async def refresh_service_owners(
    path: Path, *, url: str = SERVICES_URL, client: httpx.AsyncClient | None = None
) -> dict[str, dict[str, Any]]:
    """Fetch the services directory and overwrite the registry at *path*."""
    existing: dict[str, dict[str, Any]] = {}
    if path.is_file():
        existing = json.loads(path.read_text(encoding="utf-8"))

    log.info("service_owners.fetch", url=url)
    if client is None:
        async with httpx.AsyncClient(timeout=30.0) as own_client:
            services = await fetch_services(own_client, url)
    else:
        services = await fetch_services(client, url)

    owners = build_service_owners(services, existing)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(owners, indent=2) + "\n", encoding="utf-8")
    log.info("service_owners.written", path=str(path))
    return owners
