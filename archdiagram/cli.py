"""CLI entrypoints for archdiagram commands."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from .config import DIAGRAM_TYPES, load_config
from .engine import AnalysisEngine, AnalysisOptions, AnalysisResult, analysis_id_for
from .errors import AnalysisNotFound, ArchDiagramError
from .logging import configure_logging
from .service import run_service
from .vcs import GitClient, VCSError

STATE_DIRNAME = ".archdiagram"


def _add_verbose_option(parser: argparse.ArgumentParser, *, suppress_default: bool = False) -> None:
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=argparse.SUPPRESS if suppress_default else False,
        help="Increase log verbosity for troubleshooting.",
    )


def _add_repo_options(parser: argparse.ArgumentParser) -> None:
    _add_verbose_option(parser, suppress_default=True)
    parser.add_argument(
        "path",
        nargs="?",
        default=".",
        help="Path to the git repository (defaults to current directory).",
    )
    parser.add_argument("--ref", default="HEAD", help="Commit or ref to analyze (default: HEAD).")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="archdiagram",
        description="Derive architecture graphs and diagrams from a git repository.",
    )
    _add_verbose_option(parser)
    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze_parser = subparsers.add_parser("analyze", help="Analyze a snapshot and update the stored diagram.")
    _add_repo_options(analyze_parser)
    analyze_parser.add_argument(
        "--prior-ref",
        help="Previously analyzed commit; enables incremental analysis against it.",
    )
    analyze_parser.add_argument(
        "--language",
        action="append",
        default=[],
        dest="languages",
        help="Restrict analysis to a language tag (repeatable).",
    )
    analyze_parser.add_argument("--include", action="append", default=[], help="Only analyze matching paths.")
    analyze_parser.add_argument("--exclude", action="append", default=[], help="Skip matching paths.")
    analyze_parser.add_argument(
        "--include-tests",
        action="store_true",
        default=None,
        help="Analyze test sources as well.",
    )
    analyze_parser.add_argument("--timeout", type=float, help="Abort the run after this many seconds.")
    analyze_parser.add_argument(
        "--max-depth",
        type=int,
        help="Limit change impact propagation to this many hops (default: impact.hop_limit).",
    )
    analyze_parser.add_argument(
        "--no-patterns",
        action="store_false",
        dest="detect_patterns",
        help="Skip architectural pattern detection.",
    )

    diagram_parser = subparsers.add_parser("diagram", help="Print Mermaid markup for an analyzed snapshot.")
    _add_repo_options(diagram_parser)
    diagram_parser.add_argument(
        "--type",
        action="append",
        choices=DIAGRAM_TYPES,
        dest="diagram_types",
        help="Diagram type to render (repeatable; defaults to the configured type).",
    )
    diagram_parser.add_argument("--ai", action="store_true", help="Ask the local model to restyle the diagram.")
    diagram_parser.add_argument("--output", type=Path, help="Write markup to this file instead of stdout.")

    show_parser = subparsers.add_parser("show", help="Print a stored analysis as JSON.")
    _add_repo_options(show_parser)

    delete_parser = subparsers.add_parser("delete", help="Delete a stored analysis and its cached units.")
    _add_repo_options(delete_parser)

    serve_parser = subparsers.add_parser("serve", help="Serve the HTTP API for the git clones under a directory.")
    _add_verbose_option(serve_parser, suppress_default=True)
    serve_parser.add_argument(
        "path",
        nargs="?",
        default=".",
        help="Directory whose subdirectories are the served repositories (defaults to current directory).",
    )
    serve_parser.add_argument("--host", default="127.0.0.1", help="Interface to bind (default: 127.0.0.1).")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port to listen on (default: 8000).")

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for archdiagram commands."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(verbose=bool(args.verbose))

    if args.command == "serve":
        try:
            settings = load_config(Path(args.path)).logging
            configure_logging(verbose=bool(args.verbose), settings=settings)
            run_service(Path(args.path), host=args.host, port=args.port)
        except ArchDiagramError as exc:
            parser.exit(1, f"archdiagram serve failed: {exc}\n")
        return

    repo_path = Path(args.path).expanduser().resolve()
    project_id = repo_path.name or "repository"
    try:
        client = GitClient({project_id: repo_path})
        engine = _build_engine(repo_path, client)
        configure_logging(verbose=bool(args.verbose), settings=engine.config.logging)
        ref = client.resolve(project_id, args.ref)
    except (ArchDiagramError, VCSError) as exc:
        parser.exit(1, f"archdiagram {args.command} failed: {exc}\n")

    analysis_id = analysis_id_for(project_id, ref)
    try:
        if args.command == "analyze":
            prior_ref = client.resolve(project_id, args.prior_ref) if args.prior_ref else None
            options = AnalysisOptions(
                languages=list(args.languages),
                include_paths=list(args.include),
                exclude_paths=list(args.exclude),
                include_tests=args.include_tests,
                timeout=args.timeout,
                detect_patterns=args.detect_patterns,
                max_depth=args.max_depth,
            )
            result = engine.analyze(project_id, ref, prior_ref, options=options)
            _print_summary(result)
        elif args.command == "diagram":
            renderings = engine.generate_diagram(analysis_id, args.diagram_types, use_ai=bool(args.ai))
            markup = "\n".join(item.markup for item in renderings)
            if args.output:
                args.output.write_text(markup, encoding="utf-8")
                print(f"Diagram written to {_relativize(args.output)}")
            else:
                sys.stdout.write(markup)
        elif args.command == "show":
            result = engine.get_analysis(analysis_id)
            print(json.dumps(_summary_dict(result), indent=2))
        elif args.command == "delete":
            if not engine.delete_analysis(analysis_id):
                raise AnalysisNotFound(f"No analysis stored for '{analysis_id}'")
            print(f"Deleted analysis {analysis_id}")
        else:  # pragma: no cover - argparse enforces choices
            parser.exit(1, "Unknown command\n")
    except AnalysisNotFound as exc:
        parser.exit(1, f"{exc}\nRun `archdiagram analyze` first.\n")
    except (ArchDiagramError, VCSError, ValueError) as exc:
        parser.exit(1, f"archdiagram {args.command} failed: {exc}\nRun with --verbose for more details.\n")
    finally:
        engine.close()


def _build_engine(repo_path: Path, client: GitClient) -> AnalysisEngine:
    config = load_config(repo_path)
    state_dir = repo_path / STATE_DIRNAME
    if config.store.persistence_dir is None:
        config.store.persistence_dir = state_dir / "snapshots"
    if config.store.cache_path is None:
        config.store.cache_path = state_dir / "symbols.json"
    return AnalysisEngine(config, client)


def _summary_dict(result: AnalysisResult) -> dict[str, object]:
    return {
        "analysis_id": result.analysis_id,
        "components": [
            {"id": component.id, "kind": component.kind, "files": component.files}
            for component in result.graph.components
        ],
        "edges": [
            {"source": edge.source, "target": edge.target, "kind": edge.kind, "weight": edge.weight}
            for edge in result.graph.edges
        ],
        "patterns": [
            {"pattern": match.pattern, "components": list(match.component_ids), "confidence": match.confidence}
            for match in result.patterns
        ],
        "diagnostics": [
            {"code": item.code, "path": item.path, "message": item.message} for item in result.diagnostics
        ],
    }


def _print_summary(result: AnalysisResult) -> None:
    graph = result.graph
    mode = "incremental" if result.incremental else "full"
    print(f"Analysis {result.analysis_id} ({mode})")
    print(f"  components: {len(graph.components)}  edges: {len(graph.edges)}  external: {len(graph.external)}")
    for match in result.patterns:
        print(f"  pattern {match.pattern} ({match.confidence:.2f}): {', '.join(match.component_ids)}")
    if result.diagram is not None:
        state = "regenerated" if result.diagram.regenerated else "reconciled"
        print(f"  diagram revision {result.diagram.revision} ({state})")
    for item in result.diagnostics:
        location = f" {item.path}" if item.path else ""
        print(f"  {item.severity}: {item.code}{location}: {item.message}")


def _relativize(path: Path) -> str:
    try:
        return str(path.resolve().relative_to(Path.cwd()))
    except ValueError:
        return str(path)


if __name__ == "__main__":
    main(sys.argv[1:])
