"""CLI entry point: depcensus.

Subcommands:
    depcensus run                         # Analyze every candidate in raw-deps.json
    depcensus analyze owner/repo          # Analyze one repository, print the result row
    depcensus key-data                    # Summarize a finished results file
    depcensus update-service-owners       # Refresh the service-owner registry
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

import click

from depcensus.core.config import RunConfig, load_config
from depcensus.core.github import parse_repo_ref
from depcensus.core.logging import setup_logging

CANDIDATES_FILE = "raw-deps.json"
RESULTS_JSON = "filtered-data.json"
RESULTS_CSV = "filtered-data.csv"
KEY_DATA_FILE = "key-data.json"


def _load_config_or_exit(**overrides) -> RunConfig:
    try:
        return load_config(**overrides)
    except (OSError, ValueError, KeyError) as e:
        click.echo(f"Error: invalid configuration: {e}", err=True)
        sys.exit(1)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging")
@click.option("--log-file", type=click.Path(path_type=Path), default=None,
              help="Also write JSON-lines logs to this file")
def main(verbose: bool, log_file: Path | None) -> None:
    """depcensus: find which version of a front-end package public repositories resolve to."""
    setup_logging(verbose, log_file)


@main.command("run")
@click.option("--candidates", type=click.Path(path_type=Path), default=None,
              help=f"Dependents list (default: <data-dir>/{CANDIDATES_FILE})")
@click.option("--data-dir", type=click.Path(path_type=Path), default=None, help="Input data directory")
@click.option("--output-dir", type=click.Path(path_type=Path), default=None, help="Output directory")
@click.option("--target", default=None, help="Package to look for")
@click.option("--batch-size", type=int, default=None, help="Results per output flush")
def run(
    candidates: Path | None,
    data_dir: Path | None,
    output_dir: Path | None,
    target: str | None,
    batch_size: int | None,
) -> None:
    """Analyze every candidate repository and write JSON/CSV (and optionally SQL) output."""
    from depcensus.engines.batch.runner import UNPROCESSED_FILE, BatchRunner, load_candidates
    from depcensus.engines.batch.sinks import CsvSink, JsonArraySink, SqlSink
    from depcensus.engines.dependency_resolver.analyzer import RepositoryAnalyzer
    from depcensus.engines.github_client import GitHubClient

    config = _load_config_or_exit(
        data_dir=data_dir, output_dir=output_dir, target_package=target, batch_size=batch_size
    )
    candidates_path = candidates or config.data_dir / CANDIDATES_FILE
    try:
        entries = load_candidates(candidates_path)
    except (OSError, ValueError) as e:
        click.echo(f"Error: cannot read candidates from {candidates_path}: {e}", err=True)
        sys.exit(1)

    sinks = [
        JsonArraySink(config.output_dir / RESULTS_JSON),
        CsvSink(config.output_dir / RESULTS_CSV),
    ]
    if config.database_url:
        from depcensus.core.database import create_session_factory

        sinks.append(SqlSink(create_session_factory(config.database_url)))

    async def _run():
        async with GitHubClient(config.github_token) as client:
            analyzer = RepositoryAnalyzer(client, config.analysis)
            runner = BatchRunner(
                analyzer,
                sinks,
                batch_size=config.batch_size,
                rate_limit_probe=client.get_remaining_rate_limit,
                unprocessed_path=config.output_dir / UNPROCESSED_FILE,
            )
            return await runner.run(entries)

    try:
        summary = asyncio.run(_run())
    finally:
        for sink in sinks:
            sink.close()

    click.echo(f"\nProcessed {summary.processed} of {summary.total} repositories")
    click.echo(f"  Results written: {summary.emitted} ({summary.batches} batch(es))")
    click.echo(f"  Deny-listed: {summary.deny_listed}")
    click.echo(f"  Unprocessed: {len(summary.unprocessed)}")
    click.echo(f"  Output: {config.output_dir}")


@main.command("analyze")
@click.argument("repo")
@click.option("--data-dir", type=click.Path(path_type=Path), default=None, help="Input data directory")
@click.option("--target", default=None, help="Package to look for")
def analyze(repo: str, data_dir: Path | None, target: str | None) -> None:
    """Analyze a single repository (owner/repo or GitHub URL) and print its result row."""
    from depcensus.engines.dependency_resolver.analyzer import RepositoryAnalyzer
    from depcensus.engines.dependency_resolver.models import RepoRef
    from depcensus.engines.github_client import GitHubClient

    try:
        owner, name = parse_repo_ref(repo)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    config = _load_config_or_exit(data_dir=data_dir, target_package=target)

    async def _analyze():
        async with GitHubClient(config.github_token) as client:
            return await RepositoryAnalyzer(client, config.analysis).analyze(RepoRef(owner, name))

    result = asyncio.run(_analyze())
    if result is None:
        click.echo(f"{owner}/{name} is on the deny list, skipped.")
        return
    click.echo(json.dumps(result.to_dict(), indent=2))


@main.command("key-data")
@click.option("--results", type=click.Path(path_type=Path), default=None,
              help=f"Results array (default: <output-dir>/{RESULTS_JSON})")
@click.option("--candidates", type=click.Path(path_type=Path), default=None,
              help=f"Dependents list (default: <data-dir>/{CANDIDATES_FILE})")
@click.option("--data-dir", type=click.Path(path_type=Path), default=None, help="Input data directory")
@click.option("--output-dir", type=click.Path(path_type=Path), default=None, help="Output directory")
@click.option("-o", "--output", type=click.Path(path_type=Path), default=None,
              help=f"Report path (default: <output-dir>/{KEY_DATA_FILE})")
def key_data(
    results: Path | None,
    candidates: Path | None,
    data_dir: Path | None,
    output_dir: Path | None,
    output: Path | None,
) -> None:
    """Summarize a finished run into key-data.json."""
    from depcensus.engines.batch.runner import UNPROCESSED_FILE, load_candidates
    from depcensus.reporting.key_data import build_key_data, load_results, write_key_data

    config = _load_config_or_exit(data_dir=data_dir, output_dir=output_dir)
    results_path = results or config.output_dir / RESULTS_JSON
    candidates_path = candidates or config.data_dir / CANDIDATES_FILE
    unprocessed_path = config.output_dir / UNPROCESSED_FILE

    try:
        rows = load_results(results_path)
        total = len(load_candidates(candidates_path))
        unprocessed = (
            json.loads(unprocessed_path.read_text(encoding="utf-8"))
            if unprocessed_path.is_file()
            else []
        )
    except (OSError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    report = build_key_data(
        rows,
        total_repos=total,
        unprocessed_count=len(unprocessed),
        deny_list_size=len(config.analysis.deny_list),
    )
    output_path = output or config.output_dir / KEY_DATA_FILE
    write_key_data(output_path, report)

    click.echo(f"Key data written to {output_path}")
    click.echo(f"  Processed: {report['totalProcessed']} of {report['totalRepos']}")
    click.echo(f"  Dependencies: {report['totalDependencies']}")
    click.echo(f"  Validated: {report['keyDataValidated']}")


@main.command("update-service-owners")
@click.option("-o", "--output", type=click.Path(path_type=Path), default=None,
              help="Registry path (default: <data-dir>/service_owners.json)")
@click.option("--data-dir", type=click.Path(path_type=Path), default=None, help="Input data directory")
@click.option("--url", default=None, help="Services directory JSON URL")
def update_service_owners(output: Path | None, data_dir: Path | None, url: str | None) -> None:
    """Refresh the service-owner registry from the public services directory."""
    import httpx

    from depcensus.core.config import SERVICE_OWNERS_FILE
    from depcensus.service_owners import SERVICES_URL, refresh_service_owners

    config = _load_config_or_exit(data_dir=data_dir)
    output_path = output or config.data_dir / SERVICE_OWNERS_FILE

    try:
        owners = asyncio.run(refresh_service_owners(output_path, url=url or SERVICES_URL))
    except (httpx.HTTPError, ValueError) as e:
        click.echo(f"Error: failed to refresh service owners: {e}", err=True)
        sys.exit(1)

    repos = sum(len(by_repo) for by_repo in owners.values())
    click.echo(f"Service owners written to {output_path} ({len(owners)} owners, {repos} repos)")


if __name__ == "__main__":
    main()
