from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from lecture_live.schemas.lecture import CanvasBlock

logger = logging.getLogger(__name__)

CANVAS_TOOL_NAME = "provideCanvasMarkdown"

CANVAS_FUNCTION_DECLARATION: Dict[str, Any] = {
    "name": CANVAS_TOOL_NAME,
    "description": (
        "Render structured content on the lecture canvas next to the slide: markdown with KaTeX math, "
        "mermaid diagrams, ASCII sketches or tables."
    ),
    "parameters": {
        "type": "OBJECT",
        "properties": {
            "contentBlocks": {
                "type": "ARRAY",
                "description": "Ordered blocks to render.",
                "items": {
                    "type": "OBJECT",
                    "properties": {
                        "type": {
                            "type": "STRING",
                            "enum": ["markdown", "diagram", "ascii", "table"],
                        },
                        "content": {"type": "STRING"},
                    },
                    "required": ["type", "content"],
                },
            },
            "slideNumber": {
                "type": "INTEGER",
                "description": "1-based slide the content belongs to. Defaults to the active slide.",
            },
        },
        "required": ["contentBlocks"],
    },
}


def parse_canvas_args(args: Optional[Dict[str, Any]]) -> Tuple[List[CanvasBlock], Optional[int]]:
    """Validate tool arguments; malformed blocks are dropped."""
    args = args or {}
    raw_blocks = args.get("contentBlocks") or args.get("content_blocks") or []
    if isinstance(raw_blocks, dict):
        raw_blocks = [raw_blocks]
    # Some model revisions send a bare markdown string.
    if not raw_blocks and isinstance(args.get("markdown"), str):
        raw_blocks = [{"type": "markdown", "content": args["markdown"]}]

    blocks: List[CanvasBlock] = []
    for raw in raw_blocks:
        try:
            blocks.append(CanvasBlock.model_validate(raw))
        except ValidationError:
            logger.debug("canvas_block_invalid block=%r", raw)

    slide_number = args.get("slideNumber", args.get("slide_number"))
    try:
        slide_number = int(slide_number) if slide_number is not None else None
    except (TypeError, ValueError):
        slide_number = None
    return blocks, slide_number
