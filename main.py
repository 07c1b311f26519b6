"""CLI entrypoint: research a topic, outline it and compile a Marp slide deck from the terminal."""
from __future__ import annotations

import argparse
import logging
import re
import sys
from importlib import metadata
from pathlib import Path

from dotenv import load_dotenv

try:
    from .cache_utils import ContentCache
    from .llm import LLMConfig, init_llm
    from .logging_utils import OperationLog, setup_logging
    from .markdown_utils import extract_title
    from .marp_utils import MarpRenderer
    from .pipeline import Pipeline
    from .pipeline_common import RenderError, RunConfig, default_root_dir
    from .r_utils import ExecutionGateway, RRuntime
    from .storage_utils import ArtifactStore
    from .template_utils import TemplateRegistry
except Exception:
    from cache_utils import ContentCache
    from llm import LLMConfig, init_llm
    from logging_utils import OperationLog, setup_logging
    from markdown_utils import extract_title
    from marp_utils import MarpRenderer
    from pipeline import Pipeline
    from pipeline_common import RenderError, RunConfig, default_root_dir
    from r_utils import ExecutionGateway, RRuntime
    from storage_utils import ArtifactStore
    from template_utils import TemplateRegistry

logger = logging.getLogger("topic2deck")


def _load_version() -> str:
    try:
        return metadata.version("topic2deck")
    except metadata.PackageNotFoundError:
        return "0.0.0"


VERSION = _load_version()


def print_helper() -> None:
    """Print helper.

    Returns:
        None:
    """
    print("topic2deck help")
    print("")
    print("Quick start:")
    print('  topic2deck "quantum computing"')
    print('  topic2deck "renewable energy markets" --template "Ocean Depth" --workers 4')
    print('  topic2deck "climate models" --no-render --out-dir ./climate_deck')
    print("  topic2deck --list-templates")
    print("")
    print("Defaults:")
    print("  Root runs dir: ~/topic2deck_runs or $TOPIC2DECK_ROOT_DIR")
    print("  Per-run outputs: <root>/<deck_title_slug>/{research.md,outline.md,deck.md,deck.html,run.log,ops.log}")
    print("  API key: $OPENROUTER_API_KEY (a .env file next to this script is loaded)")
    print("")
    print("Common options:")
    print("  --template NAME        Slide template (default: first readable template)")
    print("  --list-templates       Print the template catalog and exit")
    print("  --sample N             Print N random templates and exit")
    print("  --no-stream            Wait for complete LLM responses")
    print("  --no-render            Write deck markdown only (skip the Marp CLI)")
    print("  --workers N            Run up to N R chunks in parallel")
    print("  --r-timeout S          Seconds before an R chunk is abandoned")
    print("  --list-artifacts       List stored plot artifacts and exit")
    print("  --purge-artifacts H    Delete stored artifacts older than H hours and exit")
    print("")
    print("Full options:")
    print("  topic2deck --help")


def parse_args(argv=None) -> argparse.Namespace:
    """Parse args.

    Returns:
        argparse.Namespace:
    """
    p = argparse.ArgumentParser(description="Research a topic with an LLM and compile a Marp slide deck.")
    p.add_argument("--version", action="version", version=f"topic2deck {VERSION}")
    p.add_argument("topic", nargs="?", default="", help="Research topic (blank uses a general AI overview)")
    p.add_argument("--template", "-t", default="", help="Template name (see --list-templates)")
    p.add_argument("--list-templates", "-lt", action="store_true", help="List templates and exit")
    p.add_argument("--sample", type=int, default=0, help="Print N random templates and exit")
    p.add_argument("--no-stream", "-ns", action="store_true", help="Disable streaming responses")
    p.add_argument("--no-render", "-nr", action="store_true", help="Skip HTML rendering with the Marp CLI")
    p.add_argument("--name", "-n", default="", help="Custom run name for the output directory")
    p.add_argument(
        "--root-dir",
        default=None,
        help="Root directory for all runs (default: $TOPIC2DECK_ROOT_DIR or ~/topic2deck_runs)",
    )
    p.add_argument("--out-dir", "-odir", default=None, help="Output directory (overrides --root-dir)")
    p.add_argument("--model", "-m", default=None, help="OpenRouter model name")
    p.add_argument("--workers", "-w", type=int, default=1, help="Max parallel R chunk executions")
    p.add_argument("--r-timeout", type=float, default=None, help="Timeout in seconds for each R chunk")
    p.add_argument("--list-artifacts", action="store_true", help="List stored artifacts and exit")
    p.add_argument("--purge-artifacts", type=float, default=None, metavar="HOURS", help="Purge artifacts older than HOURS and exit")
    p.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    return p.parse_args(argv)


def _slugify(s: str, max_len: int = 80) -> str:
    """Slugify.

    Args:
        s (str):
        max_len (int):

    Returns:
        str:
    """
    s = (s or "").strip()
    s = re.sub(r"[^a-zA-Z0-9]+", "_", s)
    s = s.strip("_")
    return (s or "deck").strip()[:max_len]


def _print_templates(templates) -> None:
    for t in templates:
        print(f"{t.name:<20} theme={t.theme:<8} bg={t.background_color} text={t.text_color} accent={t.accent_color}")


def _stream_to_stdout(chunk: str) -> None:
    sys.stdout.write(chunk)
    sys.stdout.flush()


def main(argv=None) -> int:
    """Function main.

    Returns:
        int:
    """
    argv = sys.argv[1:] if argv is None else argv
    if argv and argv[0] == "help":
        print_helper()
        return 0

    env_path = Path(__file__).parent / ".env"
    load_dotenv(env_path, override=False)
    args = parse_args(argv)

    registry = TemplateRegistry()
    if args.list_templates:
        _print_templates(registry.all_templates())
        return 0
    if args.sample:
        _print_templates(registry.random_sample(args.sample))
        return 0

    if args.list_artifacts or args.purge_artifacts is not None:
        setup_logging(args.verbose)
        store = ArtifactStore(RunConfig.from_env().artifact_dir)
        if args.purge_artifacts is not None:
            removed = store.purge(args.purge_artifacts * 60 * 60)
            print(f"Purged {removed} artifacts older than {args.purge_artifacts:g} hours.")
        else:
            files = store.list_files()
            for f in files:
                print(f"{f['modified']}  {f['size']:>9}  {f['name']}")
            if not files:
                print("No stored artifacts.")
        return 0

    topic = (args.topic or "").strip()
    root_dir = Path(args.root_dir).expanduser().resolve() if args.root_dir else default_root_dir()
    out_dir = (
        Path(args.out_dir).expanduser().resolve()
        if args.out_dir
        else root_dir / _slugify(args.name or topic or "Artificial Intelligence")
    )
    cfg = RunConfig.from_env(
        llm_model=args.model,
        r_timeout=args.r_timeout,
        streaming=not args.no_stream,
        render=not args.no_render,
        out_dir=out_dir,
        max_workers=max(1, args.workers),
        verbose=args.verbose,
    )
    cfg.out_dir.mkdir(parents=True, exist_ok=True)
    setup_logging(args.verbose, log_path=cfg.out_dir / "run.log", ops_log_path=cfg.out_dir / "ops.log")
    if not cfg.llm_api_key:
        logger.warning("OPENROUTER_API_KEY is not set; proceeding without a key.")

    try:
        template = registry.get(args.template) if args.template else None
    except KeyError:
        logger.error("Unknown template %r. Use --list-templates to see the catalog.", args.template)
        return 2

    client = None
    try:
        ops = OperationLog()
        logger.info("Initializing LLM...")
        client = init_llm(
            LLMConfig(
                model=cfg.llm_model,
                api_key=cfg.llm_api_key,
                base_url=cfg.base_url,
                site_url=cfg.site_url,
                app_title=cfg.app_title,
            )
        )
        store = ArtifactStore(cfg.artifact_dir, ops=ops)
        gateway = ExecutionGateway(
            runtime=RRuntime(timeout=cfg.r_timeout),
            cache=ContentCache(cfg.max_cache_size, ops=ops),
            store=store,
            ops=ops,
        )
        renderer = MarpRenderer(cfg.marp_command or None) if cfg.render else None
        pipeline = Pipeline(cfg, client, gateway=gateway, registry=registry, renderer=renderer, store=store, ops=ops)

        on_chunk = _stream_to_stdout if cfg.streaming else None
        doc = pipeline.conduct_research(topic, on_chunk=on_chunk)
        if on_chunk is None:
            print(doc.raw_text)
        print("")
        outline = pipeline.generate_outline(doc)
        logger.info("Outline ready: %s (%s slides)", extract_title(outline.normalized_text), len(outline.slide_breaks) + 1)
        try:
            pipeline.compile_deck(outline, template)
        except RenderError as exc:
            paths = pipeline.save_outputs()
            logger.error("Deck markdown saved but HTML rendering failed: %s", exc)
            print("\nOutput directory:", cfg.out_dir.resolve())
            return 1
        paths = pipeline.save_outputs()

        print("\nOutput directory:", cfg.out_dir.resolve())
        print("Generated:", ", ".join(p.name for p in paths))
        return 0
    except Exception:
        logger.exception("Unhandled error in pipeline run")
        return 1
    finally:
        if client is not None:
            client.close()


if __name__ == "__main__":
    raise SystemExit(main())
