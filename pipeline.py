"""Core pipeline with class-based organization."""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from tqdm import tqdm

try:
    from .llm import QueryClient
    from .logging_utils import OperationLog
    from .markdown_utils import (
        extract_code_blocks,
        find_slide_breaks,
        normalize_outline,
        repair_slide_breaks,
        split_front_matter,
    )
    from .marp_utils import MarpRenderer, apply_template_markup, artifact_markup, build_directives
    from .models import Artifact, CodeBlock, Outline, OutlineRecord, ResearchDocument, ResearchResult, Template
    from .pipeline_common import (
        EmptyOutline,
        EmptySourceDocument,
        ExecutionError,
        InvalidResponseFormat,
        RunConfig,
        RunOutputStore,
        TQDM_NCOLS,
    )
    from .r_utils import ExecutionGateway, classify_kind
    from .storage_utils import ArtifactStore
    from .template_utils import TemplateRegistry
except Exception:
    from llm import QueryClient
    from logging_utils import OperationLog
    from markdown_utils import (
        extract_code_blocks,
        find_slide_breaks,
        normalize_outline,
        repair_slide_breaks,
        split_front_matter,
    )
    from marp_utils import MarpRenderer, apply_template_markup, artifact_markup, build_directives
    from models import Artifact, CodeBlock, Outline, OutlineRecord, ResearchDocument, ResearchResult, Template
    from pipeline_common import (
        EmptyOutline,
        EmptySourceDocument,
        ExecutionError,
        InvalidResponseFormat,
        RunConfig,
        RunOutputStore,
        TQDM_NCOLS,
    )
    from r_utils import ExecutionGateway, classify_kind
    from storage_utils import ArtifactStore
    from template_utils import TemplateRegistry

logger = logging.getLogger("topic2deck")

ChunkCallback = Callable[[str], None]

DEFAULT_SUBTOPICS = ["Machine learning", "NLP", "Computer vision", "AI ethics", "Future trends"]


def research_prompt(topic: str) -> str:
    topic = (topic or "").strip()
    if not topic:
        return """
Conduct a thorough research study on artificial intelligence and its applications in modern society.

Include the following subtopics:
- Machine learning and deep learning
- Natural language processing
- Computer vision
- AI ethics and governance
- Future trends in AI

Provide comprehensive information with academic rigor. Include relevant facts, theories, and current developments.
""".strip()
    return f"""
Conduct a thorough research study on {topic}.

Provide comprehensive information with academic rigor. Include relevant facts, theories, and current developments. Organize the information into logical sections with appropriate headings.
""".strip()


def outline_prompt(research_text: str) -> str:
    return f"""
Based on the following research, create a comprehensive presentation outline using MARP-compatible Markdown format:

{research_text}

Format the outline as follows:
1. Your document MUST begin with these exact MARP directives as the first lines of your response:
---
marp: true
theme: gaia
class: lead
paginate: true
---
2. Create a title slide with a clear # Title and ## Subtitle.
3. ALWAYS use "---" on a separate line to create a slide break between each main topic or key point.
4. For each slide:
   - Use # for slide titles (only one per slide)
   - Use ## for section headings within a slide
   - Use ### for subsections
   - Keep content concise to prevent overflow
5. For tables, use proper markdown table syntax with headers. IMPORTANT: Make sure each table row ends with a pipe character and is followed by a newline:
   | Header 1 | Header 2 | Header 3 |
   | -------- | -------- | -------- |
   | Cell 1   | Cell 2   | Cell 3   |
6. Use bullet points for lists (not too many per slide):
   - Main point
     - Sub point
7. For emphasis, use **bold** or *italic* text.
8. Where a chart or a computed table would help, you may add an R code chunk that is self-contained
   (it must create its own data). Open it with ```{{r plot}} for a chart or ```{{r table}} for a table
   that returns a data frame, and close it with ```.
9. IMPORTANT: Ensure each slide has a clear purpose and doesn't contain too much text that would cause overflow.
IMPORTANT: The MARP directives should ONLY appear once at the very beginning of the document. Do NOT include them as visible content within your slides. Do NOT wrap the whole answer in a code fence.
""".strip()


def _timestamp() -> str:
    return datetime.now().isoformat(timespec="seconds")


class OutlineBuilder:
    def __init__(self, client: QueryClient, cfg: RunConfig) -> None:
        self.client = client
        self.cfg = cfg

    def generate(
        self,
        document: ResearchDocument,
        streaming: Optional[bool] = None,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> Outline:
        """Turn a research document into a normalized slide outline.

        Args:
            document (ResearchDocument):
            streaming (Optional[bool]): Defaults to the run config.
            on_chunk (Optional[ChunkCallback]):

        Returns:
            Outline:
        """
        if not (document.raw_text or "").strip():
            raise EmptySourceDocument("No research results available to generate an outline")
        if not document.is_complete:
            raise EmptySourceDocument("Research did not finish; run it again before generating an outline")
        streaming = self.cfg.streaming if streaming is None else streaming
        prompt = outline_prompt(document.raw_text)
        logger.info("Generating outline (prompt_len=%s, streaming=%s)...", len(prompt), streaming)
        raw = self.client.query(prompt, max_tokens=self.cfg.outline_max_tokens, streaming=streaming, on_chunk=on_chunk)
        text = normalize_outline(raw)
        if not text:
            raise EmptyOutline("Model returned an empty outline")
        return Outline(
            source_document_id=document.id,
            normalized_text=text,
            slide_breaks=find_slide_breaks(text),
        )


class DeckCompiler:
    """Assembles a themed Marp deck from an outline.

    R chunks are executed through the gateway and replaced by their artifacts
    in document order; a chunk that fails stays in the deck as written.
    """

    def __init__(
        self,
        gateway: ExecutionGateway,
        renderer: Optional[MarpRenderer] = None,
        max_workers: int = 1,
        ops: Optional[OperationLog] = None,
    ) -> None:
        self.gateway = gateway
        self.renderer = renderer
        self.max_workers = max(1, int(max_workers))
        self.ops = ops or OperationLog()

    def _run_block(self, block: CodeBlock) -> Tuple[Optional[Artifact], str]:
        kind = block.kind or classify_kind(block.raw_source)
        try:
            return self.gateway.execute(block.raw_source, kind), kind
        except ExecutionError as exc:
            logger.warning("Keeping R chunk at offset %s verbatim: %s", block.start, exc)
            return None, kind

    def _execute_blocks(self, blocks: List[CodeBlock]) -> Dict[int, Tuple[Optional[Artifact], str]]:
        results: Dict[int, Tuple[Optional[Artifact], str]] = {}
        if not blocks:
            return results
        if self.max_workers == 1 or len(blocks) == 1:
            for i, b in enumerate(blocks):
                results[i] = self._run_block(b)
            return results
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(blocks))) as ex:
            futures = {ex.submit(self._run_block, b): i for i, b in enumerate(blocks)}
            for fut in tqdm(as_completed(futures), total=len(futures), desc="R chunks", ncols=TQDM_NCOLS):
                results[futures[fut]] = fut.result()
        return results

    def substitute_artifacts(self, text: str) -> str:
        """Replace executable R chunks by their rendered artifacts.

        Args:
            text (str):

        Returns:
            str:
        """
        blocks = [b for b in extract_code_blocks(text) if b.language == "statistical"]
        results = self._execute_blocks(blocks)
        parts: List[str] = []
        cursor = 0
        replaced = 0
        for i, block in enumerate(blocks):
            artifact, kind = results[i]
            parts.append(text[cursor:block.start])
            if artifact is None:
                parts.append(text[block.start:block.end])
            else:
                first_line = block.raw_source.strip().splitlines()[0] if block.raw_source.strip() else ""
                parts.append(artifact_markup(artifact, alt_text=f"R {kind}: {first_line[:40]}"))
                replaced += 1
            cursor = block.end
        parts.append(text[cursor:])
        if blocks:
            self.ops.record("substitute", blocks=len(blocks), replaced=replaced, failed=len(blocks) - replaced)
        return "".join(parts)

    def assemble(self, outline: Outline, template: Template) -> str:
        """Build the deck markdown (directives, artifacts, repaired slide breaks).

        Args:
            outline (Outline):
            template (Template):

        Returns:
            str:
        """
        text = (outline.normalized_text or "").strip()
        if not text:
            raise EmptyOutline("Outline is empty")
        _front, body = split_front_matter(text)
        body = self.substitute_artifacts(body)
        body = repair_slide_breaks(body)
        body = apply_template_markup(body)
        return build_directives(template) + "\n\n" + body.strip() + "\n"

    def compile(self, outline: Outline, template: Template) -> str:
        """Assemble the deck and hand it to the renderer.

        Args:
            outline (Outline):
            template (Template):

        Returns:
            str: Rendered HTML, or the deck markdown when no renderer is set.
        """
        return self.render(self.assemble(outline, template))

    def render(self, markdown: str) -> str:
        if self.renderer is None:
            return markdown
        logger.info("Rendering deck with Marp...")
        return self.renderer.render(markdown)


class Pipeline:
    def __init__(
        self,
        cfg: RunConfig,
        client: QueryClient,
        gateway: Optional[ExecutionGateway] = None,
        registry: Optional[TemplateRegistry] = None,
        renderer: Optional[MarpRenderer] = None,
        store: Optional[ArtifactStore] = None,
        ops: Optional[OperationLog] = None,
    ) -> None:
        self.cfg = cfg
        self.client = client
        self.ops = ops or OperationLog()
        self.store = store
        self.gateway = gateway or ExecutionGateway(store=store, ops=self.ops)
        self.registry = registry or TemplateRegistry()
        self.outline_builder = OutlineBuilder(client, cfg)
        self.compiler = DeckCompiler(self.gateway, renderer=renderer, max_workers=cfg.max_workers, ops=self.ops)
        self.research: Optional[ResearchDocument] = None
        self.outline: Optional[Outline] = None
        self.deck_markdown: str = ""
        self.deck_output: str = ""
        self.research_history: List[ResearchResult] = []
        self.outline_history: List[OutlineRecord] = []

    def conduct_research(self, topic: str = "", on_chunk: Optional[ChunkCallback] = None) -> ResearchDocument:
        """Stream a research report for ``topic`` into a new document.

        The document is published on ``self.research`` before the request starts,
        so text received before a failure stays available to the caller.

        Args:
            topic (str):
            on_chunk (Optional[ChunkCallback]):

        Returns:
            ResearchDocument:
        """
        topic = (topic or "").strip()
        doc = ResearchDocument(topic=topic or "Artificial Intelligence")
        self.research = doc

        def _collect(chunk: str) -> None:
            doc.append(chunk)
            if on_chunk is not None:
                on_chunk(chunk)

        logger.info("Conducting research on: %s", doc.topic)
        result = self.client.query(
            research_prompt(topic),
            max_tokens=self.cfg.research_max_tokens,
            streaming=self.cfg.streaming,
            on_chunk=_collect,
        )
        if not result.strip():
            raise InvalidResponseFormat("Research completed but returned no result")
        doc.mark_complete(result)
        self.research_history.append(
            ResearchResult(
                topic=doc.topic,
                subtopics=[] if topic else list(DEFAULT_SUBTOPICS),
                content=result,
                timestamp=_timestamp(),
            )
        )
        self.ops.record("research", topic=doc.topic, chars=len(result))
        return doc

    def generate_outline(
        self,
        document: Optional[ResearchDocument] = None,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> Outline:
        document = document or self.research
        if document is None:
            raise EmptySourceDocument("No research results available to generate an outline")
        outline = self.outline_builder.generate(document, on_chunk=on_chunk)
        self.outline = outline
        self.outline_history.append(OutlineRecord(content=outline.normalized_text, timestamp=_timestamp()))
        self.ops.record("outline", document=document.id, chars=len(outline.normalized_text), slides=len(outline.slide_breaks) + 1)
        return outline

    def default_template(self) -> Template:
        readable = self.registry.readable_templates()
        return readable[0] if readable else self.registry.all_templates()[0]

    def compile_deck(self, outline: Optional[Outline] = None, template: Optional[Template] = None) -> str:
        outline = outline or self.outline
        if outline is None:
            raise EmptyOutline("No presentation outline available to generate slides")
        template = template or self.default_template()
        markdown = self.compiler.assemble(outline, template)
        self.deck_markdown = markdown
        output = self.compiler.render(markdown)
        self.deck_output = output
        self.ops.record("compile", template=template.name, chars=len(markdown), rendered=self.compiler.renderer is not None)
        return output

    def list_templates(self, readable_only: bool = False) -> List[Template]:
        return self.registry.readable_templates() if readable_only else self.registry.all_templates()

    def sample_templates(self, n: int) -> List[Template]:
        return self.registry.random_sample(n)

    def save_outputs(self, out_dir: Optional[Path] = None) -> List[Path]:
        store = RunOutputStore(out_dir or self.cfg.out_dir)
        paths: List[Path] = []
        if self.research is not None and self.research.raw_text:
            paths.append(store.save("research.md", self.research.raw_text))
        if self.outline is not None:
            paths.append(store.save("outline.md", self.outline.normalized_text + "\n"))
        if self.deck_markdown:
            paths.append(store.save("deck.md", self.deck_markdown))
        if self.deck_output and self.deck_output != self.deck_markdown:
            paths.append(store.save("deck.html", self.deck_output))
        return paths
