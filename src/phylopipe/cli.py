from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from . import __version__
from .config import MaskingFailurePolicy, PipelineConfig, RootingEngine, load_settings
from .steps import Step, step_names

logger = logging.getLogger(__name__)


def _write_json_file(path: str | Path, payload: Any) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with p.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2, sort_keys=True)
        handle.write("\n")


def _emit_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="phylopipe",
        description="phylopipe: resumable gene-family phylogeny and orthology pipeline.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # run
    run = subparsers.add_parser("run", help="Run the pipeline on one gene family.")
    run.add_argument("-f", "--family", required=True, help="Family identifier; names the output files.")
    run.add_argument("-i", "--infile", required=True, metavar="FASTA")
    run.add_argument("-r", "--resume", choices=step_names(), default=Step.ALIGNMENT.label)
    run.add_argument("-e", "--end", choices=step_names(), default=Step.ORTHOLOGY.label)
    run.add_argument("-a", "--autoresume", action="store_true", help="Skip steps whose outputs already exist.")
    run.add_argument(
        "--rap",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Root with RAP (default) or with SDI followed by RIO orthology.",
    )
    run.add_argument(
        "--skip-bad-masking",
        action="store_true",
        help="Use the unmasked alignment when masking fails.",
    )
    run.add_argument("--skip-masking", action="store_true", help="Do not mask the alignment.")
    run.add_argument("--midpoint-rooting", action="store_true")
    run.add_argument("--check-alignment-quality", action="store_true")
    run.add_argument("--output-dir", default=None, metavar="DIR")
    run.add_argument("--email", default=None, help="Send a notification to this address when done.")
    run.add_argument("--clear", action="store_true", help="Remove previous analyses of the family.")
    run.add_argument("--config", default=None, metavar="JSON")
    run.add_argument("--debug", action="store_true", dest="run_debug")
    run.add_argument("--manifest", default=None, metavar="JSON")
    run.add_argument("--json", action="store_true", help="Print the outcome as JSON.")

    # show-config
    show = subparsers.add_parser("show-config", help="Print the effective settings.")
    show.add_argument("--config", default=None, metavar="JSON")

    # topology
    topo = subparsers.add_parser("topology", help="Classify tree topologies and test distance differences.")
    topo.add_argument("--dir", required=True, metavar="DIR")
    topo.add_argument("--suffix", default=None, help="Tree file suffix (default .nwk.out).")
    topo.add_argument("--iterations", type=int, default=1000)
    topo.add_argument("--seed", type=int, default=None)
    topo.add_argument("--config", default=None, metavar="JSON")
    topo.add_argument("--output", default=None, metavar="PREFIX", help="Write TSV tables with this prefix.")
    topo.add_argument("--plot", default=None, metavar="PDF")
    topo.add_argument("--manifest", default=None, metavar="JSON")
    topo.add_argument("--json", action="store_true")

    # reroot
    reroot = subparsers.add_parser("reroot", help="Reroot trees on a single outgroup leaf.")
    reroot.add_argument("--dir", required=True, metavar="DIR")
    reroot.add_argument("--out", required=True, metavar="DIR")
    reroot.add_argument("--outgroup-prefix", default=None)
    reroot.add_argument("--suffix", default=None)
    reroot.add_argument("--config", default=None, metavar="JSON")

    # doctor
    doctor = subparsers.add_parser("doctor", help="Check external tools and settings.")
    doctor.add_argument("--config", default=None, metavar="JSON")
    doctor.add_argument("--email", default=None)
    doctor.add_argument("--json", action="store_true")

    return parser


def _cmd_run(args: argparse.Namespace) -> int:
    from .pipeline import Pipeline

    settings = load_settings(args.config)
    config = PipelineConfig(
        family_id=args.family,
        input_fasta=Path(args.infile),
        settings=settings,
        output_dir=Path(args.output_dir) if args.output_dir else None,
        resume_step=Step.parse(args.resume),
        end_step=Step.parse(args.end),
        auto_resume=args.autoresume,
        rooting_engine=RootingEngine.RAP if args.rap else RootingEngine.SDI,
        masking_failure_policy=(
            MaskingFailurePolicy.USE_ORIGINAL_ALIGNMENT if args.skip_bad_masking else MaskingFailurePolicy.ABORT
        ),
        skip_masking=args.skip_masking,
        midpoint_rooting=args.midpoint_rooting,
        check_alignment_quality=args.check_alignment_quality,
        clear_previous=args.clear,
        email=args.email,
    )
    outcome = Pipeline(config).run()
    if args.json:
        _emit_json(outcome.to_dict())
    else:
        print(outcome.summary())
    if args.manifest:
        from .manifest import build_manifest

        manifest = build_manifest("run", args._argv, settings)
        manifest["outcome"] = outcome.to_dict()
        _write_json_file(args.manifest, manifest)
    return 0


def _cmd_show_config(args: argparse.Namespace) -> int:
    _emit_json(load_settings(args.config).to_dict())
    return 0


def _cmd_topology(args: argparse.Namespace) -> int:
    from .analysis import DEFAULT_TREE_SUFFIX, run_topology_analysis

    settings = load_settings(args.config)
    report = run_topology_analysis(
        args.dir,
        suffix=args.suffix or DEFAULT_TREE_SUFFIX,
        iterations=args.iterations,
        seed=args.seed,
        settings=settings,
    )
    if args.output:
        for path in report.write_tables(args.output):
            logger.info("Wrote %s", path)
    if args.plot:
        if report.null_values is None:
            logger.warning("No null distribution to plot")
        else:
            from .plots import plot_null_distribution

            plot_null_distribution(report, args.plot)
    if args.manifest:
        from .manifest import build_manifest

        manifest = build_manifest("topology", args._argv, settings, seed=args.seed)
        manifest["result"] = report.to_dict()
        _write_json_file(args.manifest, manifest)
    if args.json:
        _emit_json(report.to_dict())
    else:
        print(report.render())
    return 0


def _cmd_reroot(args: argparse.Namespace) -> int:
    from .analysis import DEFAULT_TREE_SUFFIX
    from .reroot import DEFAULT_OUTGROUP_PREFIX, reroot_directory

    summary = reroot_directory(
        args.dir,
        args.out,
        settings=load_settings(args.config),
        outgroup_prefix=args.outgroup_prefix or DEFAULT_OUTGROUP_PREFIX,
        suffix=args.suffix or DEFAULT_TREE_SUFFIX,
    )
    print(summary.render())
    return 0


def _cmd_doctor(args: argparse.Namespace) -> int:
    from .doctor import run_doctor

    report = run_doctor(load_settings(args.config), email=args.email)
    if args.json:
        _emit_json(report.to_dict())
    else:
        print(report.render())
    return 1 if report.has_failures else 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    args._argv = list(argv if argv is not None else sys.argv[1:])
    _configure_logging(args.debug or getattr(args, "run_debug", False))
    try:
        if args.command == "run":
            return _cmd_run(args)
        if args.command == "show-config":
            return _cmd_show_config(args)
        if args.command == "topology":
            return _cmd_topology(args)
        if args.command == "reroot":
            return _cmd_reroot(args)
        if args.command == "doctor":
            return _cmd_doctor(args)
    except Exception as exc:
        parser.exit(status=2, message=f"error: {exc}\n")
    parser.exit(status=2, message="error: unknown command\n")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
