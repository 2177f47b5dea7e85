import argparse
import asyncio
import logging
import os
import sys

from . import config
from .diagnostics import write_report
from .engine import ProgressEngine
from .errors import EngineError
from .providers import RemoteSceneGraphProvider, load_scene_dump
from .settings import load_settings

logger = logging.getLogger(__name__)

TOKEN_ENV_VAR = "APS_ACCESS_TOKEN"


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Classify scene elements, index them and join a progress dataset.")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--scene", type=str, help="Scene dump (.json / .jsonl, optionally .gz / .zst).")
    source.add_argument("--urn", type=str, help="Model Derivative urn of the translated model.")
    parser.add_argument("--model-guid", type=str, default=None, help="Viewable guid (required with --urn).")
    parser.add_argument(
        "--subtree-root",
        type=str,
        default=None,
        help="Node id of the subtree hosting domain geometry ('none' disables the subtree scan).",
    )
    parser.add_argument("--dataset", type=str, default=None, help="Progress dataset (.csv / .json / .jsonl).")
    parser.add_argument("--settings", type=str, default=None, help="JSON settings override file.")
    parser.add_argument("--out-dir", type=str, default=str(config.REPORTS_DIR), help="Directory for JSON reports.")
    parser.add_argument("--batch-size", type=int, default=None, help="Elements per bulk property fetch.")
    parser.add_argument(
        "--inspect",
        type=int,
        default=None,
        metavar="N",
        help="Only report property-name frequencies over the first N elements.",
    )
    parser.add_argument("--no-progress", action="store_true", help="Disable progress bars.")
    return parser.parse_args(argv)


def _parse_node_id(raw):
    if raw is None:
        return None
    if raw.lower() == "none":
        return "none"
    return int(raw) if raw.isdigit() else raw


def build_provider(args):
    if args.scene:
        return load_scene_dump(args.scene, show_progress=not args.no_progress)
    token = os.environ.get(TOKEN_ENV_VAR)
    if not token:
        raise SystemExit(f"[!] {TOKEN_ENV_VAR} must be set to query the Model Derivative API.")
    return RemoteSceneGraphProvider(args.urn, args.model_guid, token)


async def run(args):
    settings = load_settings(args.settings)
    overrides = {}
    if args.batch_size is not None:
        overrides["chunk_size"] = args.batch_size
    if args.no_progress:
        overrides["show_progress"] = False
    subtree_root = _parse_node_id(args.subtree_root)
    if subtree_root == "none":
        overrides["subtree_root"] = None
    elif subtree_root is not None:
        overrides["subtree_root"] = subtree_root
    if overrides:
        settings = settings.with_overrides(overrides)

    engine = ProgressEngine(provider=build_provider(args), settings=settings)

    if args.inspect is not None:
        report = await engine.inspect_property_names(args.inspect)
        write_report("property_names", report, out_dir=args.out_dir)
        return 0

    scan_stats = await engine.analyze_model()
    write_report("scan_stats", scan_stats.to_dict(), out_dir=args.out_dir)
    write_report("elements", engine.export_data(), out_dir=args.out_dir)

    if args.dataset:
        engine.load_dataset_file(args.dataset)
        engine.build_mappings()
        write_report("unmapped", engine.export_unmapped(), out_dir=args.out_dir)
        write_report("block_schedule", engine.dataset.schedule_by_block(), out_dir=args.out_dir)

    write_report("stats", engine.stats(), out_dir=args.out_dir)
    return 0


def main(argv=None):
    logging.basicConfig(level=logging.INFO, format=config.LOG_FORMAT, datefmt=config.LOG_DATEFMT)
    args = parse_args(argv)
    if args.urn and not args.model_guid:
        logger.error("[!] --model-guid is required with --urn.")
        return 2
    try:
        return asyncio.run(run(args))
    except EngineError as exc:
        logger.error("[!] %s", exc)
        if exc.details:
            logger.error("[!] Details: %s", exc.details)
        return 1
    except KeyboardInterrupt:
        print("\n[!] Interrupted.", file=sys.stderr)
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
