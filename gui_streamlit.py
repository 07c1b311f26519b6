"""Streamlit GUI for topic2deck."""
from __future__ import annotations

import json
import logging
import threading
import time
from pathlib import Path
from typing import Callable, List

import streamlit as st
from dotenv import load_dotenv

from cache_utils import ContentCache
from llm import LLMConfig, init_llm
from logging_utils import OperationLog, setup_logging
from markdown_utils import create_summary, extract_title
from marp_utils import MarpRenderer
from pipeline import Pipeline
from pipeline_common import APP_TITLE, RunConfig, default_root_dir
from r_utils import ExecutionGateway, RRuntime
from storage_utils import ArtifactStore
from template_utils import TemplateRegistry, get_contrast_color

CONFIG_PATH = Path.home() / ".topic2deck_gui.json"
PREVIEW_COUNT = 3


class _LogBufferHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.lines: list[str] = []

    def emit(self, record: logging.LogRecord) -> None:
        msg = self.format(record)
        self.lines.append(msg)
        if len(self.lines) > 1000:
            self.lines = self.lines[-1000:]


def _load_gui_config() -> dict:
    """Load gui config.

    Returns:
        dict:
    """
    if CONFIG_PATH.exists():
        try:
            return json.loads(CONFIG_PATH.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return {}
    return {}


def _save_gui_config(data: dict) -> None:
    CONFIG_PATH.write_text(json.dumps(data, indent=2), encoding="utf-8")


def _slugify(s: str, max_len: int = 80) -> str:
    out = "".join(c if c.isalnum() else "_" for c in (s or "").strip())
    out = "_".join(p for p in out.split("_") if p)
    return (out or "deck")[:max_len]


def _build_pipeline(cfg: RunConfig) -> Pipeline:
    ops = OperationLog()
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
    return Pipeline(cfg, client, gateway=gateway, registry=TemplateRegistry(), renderer=renderer, store=store, ops=ops)


def _run_streaming(label: str, target: Callable[[Callable[[str], None]], None], log_handler: _LogBufferHandler) -> dict:
    """Run ``target`` in a thread while the page shows streamed text and logs.

    Args:
        label (str):
        target (Callable): receives the chunk callback.
        log_handler (_LogBufferHandler):

    Returns:
        dict: ``streamed`` tells whether any chunk arrived; ``error`` is set when the step failed.
    """
    chunks: List[str] = []
    result: dict = {}

    def _worker() -> None:
        try:
            target(chunks.append)
        except Exception as exc:
            logging.getLogger("topic2deck").exception("%s failed", label)
            result["error"] = str(exc)

    text_box = st.empty()
    log_box = st.empty()
    with st.spinner(f"{label}..."):
        t = threading.Thread(target=_worker, daemon=True)
        t.start()
        while t.is_alive():
            text_box.markdown("".join(chunks))
            log_box.text_area("Live logs", value="\n".join(log_handler.lines), height=160)
            time.sleep(0.3)
        text_box.markdown("".join(chunks))
        log_box.text_area("Live logs", value="\n".join(log_handler.lines), height=160)
    result["streamed"] = bool(chunks)
    return result


def _template_swatch(t) -> str:
    fg = get_contrast_color(t.background_color)
    return (
        f'<div style="background:{t.background_color};color:{t.text_color};padding:12px;'
        f'border:2px solid {t.accent_color};border-radius:6px;font-family:{t.body_font}">'
        f'<b style="color:{t.accent_color};font-family:{t.heading_font}">{t.name}</b><br/>'
        f'<span style="font-size:0.8em;background:{t.accent_color};color:{fg};padding:1px 4px">'
        f"{t.theme}</span></div>"
    )


def main() -> None:
    st.set_page_config(page_title=APP_TITLE, layout="wide")
    st.title(APP_TITLE)
    load_dotenv(Path(__file__).parent / ".env", override=False)

    if "gui_config" not in st.session_state:
        st.session_state["gui_config"] = _load_gui_config()
    if "log_handler" not in st.session_state:
        handler = _LogBufferHandler()
        handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
        st.session_state["log_handler"] = handler
    log_handler: _LogBufferHandler = st.session_state["log_handler"]

    with st.sidebar:
        st.header("Settings")
        base = RunConfig.from_env()
        model = st.text_input("Model", value=base.llm_model)
        streaming = st.checkbox("Stream responses", value=True)
        render = st.checkbox("Render HTML with Marp", value=True)
        workers = st.number_input("Parallel R chunks", min_value=1, max_value=16, value=1)
        r_timeout = st.number_input("R timeout (s)", min_value=5.0, value=float(base.r_timeout))
        default_root = st.session_state["gui_config"].get("root_dir", str(default_root_dir()))
        root_dir = st.text_input("Root runs directory", value=default_root)
        if root_dir != default_root:
            st.session_state["gui_config"]["root_dir"] = root_dir
            _save_gui_config(st.session_state["gui_config"])
        if not base.llm_api_key:
            st.warning("OPENROUTER_API_KEY is not set.")

    topic = st.text_input("Research topic", placeholder="e.g. quantum computing")
    cfg = RunConfig.from_env(
        llm_model=model,
        streaming=streaming,
        render=render,
        max_workers=int(workers),
        r_timeout=float(r_timeout),
        out_dir=Path(root_dir).expanduser() / _slugify(topic or "Artificial Intelligence"),
    )

    key = (cfg.llm_model, cfg.llm_api_key, cfg.render, cfg.max_workers, cfg.r_timeout, str(cfg.out_dir))
    if st.session_state.get("_pipeline_key") != key:
        cfg.out_dir.mkdir(parents=True, exist_ok=True)
        setup_logging(False, log_path=cfg.out_dir / "run.log", ops_log_path=cfg.out_dir / "ops.log")
        logging.getLogger().addHandler(log_handler)
        previous = st.session_state.get("pipeline")
        pipeline = _build_pipeline(cfg)
        if previous is not None:
            pipeline.research = previous.research
            pipeline.outline = previous.outline
            pipeline.research_history = previous.research_history
            pipeline.outline_history = previous.outline_history
        st.session_state["pipeline"] = pipeline
        st.session_state["_pipeline_key"] = key
    pipeline: Pipeline = st.session_state["pipeline"]

    tab_research, tab_outline, tab_deck = st.tabs(["Research", "Outline", "Slides"])

    with tab_research:
        if st.button("Conduct research", type="primary"):
            res = _run_streaming("Researching", lambda cb: pipeline.conduct_research(topic, on_chunk=cb), log_handler)
            if "error" in res:
                st.error(res["error"])
            elif not res["streamed"] and pipeline.research is not None:
                # Non-streaming requests deliver the report in one piece.
                st.markdown(pipeline.research.raw_text)
        elif pipeline.research is not None:
            st.markdown(pipeline.research.raw_text)
        if pipeline.research_history:
            with st.expander("Research history"):
                for item in reversed(pipeline.research_history):
                    st.markdown(f"**{item.topic}** ({item.timestamp}): {create_summary(item.content)}")

    with tab_outline:
        disabled = pipeline.research is None or not pipeline.research.is_complete
        if st.button("Generate outline", disabled=disabled):
            res = _run_streaming("Outlining", lambda cb: pipeline.generate_outline(on_chunk=cb), log_handler)
            if "error" in res:
                st.error(res["error"])
        if pipeline.outline is not None:
            st.subheader(extract_title(pipeline.outline.normalized_text))
            st.code(pipeline.outline.normalized_text, language="markdown")

    with tab_deck:
        if "preview" not in st.session_state or st.button("Shuffle templates"):
            st.session_state["preview"] = pipeline.registry.random_sample(PREVIEW_COUNT)
        preview = st.session_state["preview"]
        cols = st.columns(len(preview) or 1)
        for col, t in zip(cols, preview):
            col.markdown(_template_swatch(t), unsafe_allow_html=True)
        names = [t.name for t in pipeline.list_templates()]
        choice = st.selectbox("Template", names, index=names.index(preview[0].name) if preview else 0)

        if st.button("Compile slides", disabled=pipeline.outline is None):
            try:
                with st.spinner("Compiling deck..."):
                    pipeline.compile_deck(template=pipeline.registry.get(choice))
                paths = pipeline.save_outputs()
                st.success("Saved: " + ", ".join(p.name for p in paths))
            except Exception as exc:
                logging.getLogger("topic2deck").exception("Deck compilation failed")
                st.error(str(exc))

        if pipeline.deck_markdown:
            slug = _slugify(extract_title(pipeline.deck_markdown))
            st.download_button("Download markdown", pipeline.deck_markdown, file_name=f"{slug}.md", mime="text/markdown")
            if pipeline.deck_output != pipeline.deck_markdown:
                st.download_button("Download HTML", pipeline.deck_output, file_name=f"{slug}.html", mime="text/html")
            with st.expander("Deck markdown"):
                st.code(pipeline.deck_markdown, language="markdown")

    st.divider()
    st.caption("Tip: set OPENROUTER_API_KEY in your environment or a .env file before launching Streamlit.")


if __name__ == "__main__":
    main()
