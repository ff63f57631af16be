"""Extract the reply and proposed document edits from raw model output.

Expected shape::

    <plain-language reply>
    ---JSON---
    {"reply": "...", "documents": [{"id": "...", "title": "...", "content": "...", "type": "..."}]}

Anything that does not fit degrades to "reply only, no edits"; parsing never
raises.
"""

import json
from typing import Any

from board_engine.core.logging import get_logger
from board_engine.core.schemas_chat2edit import EditProposal, ParsedModelOutput

logger = get_logger(__name__)

JSON_DELIMITER = "\n---JSON---\n"


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Parse the span between the first ``{`` and the last ``}`` as a JSON object."""
    first = text.find("{")
    last = text.rfind("}")
    if first == -1 or last == -1 or last <= first:
        return None
    try:
        parsed = json.loads(text[first : last + 1])
    except (json.JSONDecodeError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


def parse_model_output(raw: str | None) -> ParsedModelOutput:
    """
    Split raw model text into a reply and a list of edit proposals.

    Args:
        raw: Full model output

    Returns:
        ParsedModelOutput; ``structured`` is False when no JSON object was found
    """
    text = raw or ""
    delim_index = text.find(JSON_DELIMITER)
    if delim_index >= 0:
        reply_text = text[:delim_index].strip()
        json_text = text[delim_index + len(JSON_DELIMITER) :]
    else:
        reply_text = ""
        json_text = text

    parsed = extract_json_object(json_text)
    if parsed is None:
        if text.strip():
            logger.debug("Model output had no parsable JSON object; treating as reply only")
        return ParsedModelOutput(reply=text.strip(), proposals=[], structured=False)

    docs_raw = parsed.get("documents")
    if not isinstance(docs_raw, list):
        docs_raw = parsed.get("updatedDocs")
    if not isinstance(docs_raw, list):
        docs_raw = []

    proposals = []
    for item in docs_raw:
        proposal = EditProposal.from_model_item(item)
        if proposal is not None:
            proposals.append(proposal)

    json_reply = parsed.get("reply")
    json_reply = json_reply.strip() if isinstance(json_reply, str) else ""
    reply = reply_text or json_reply or text.strip()

    return ParsedModelOutput(reply=reply, proposals=proposals, structured=True)
