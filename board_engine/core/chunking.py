"""Text chunking for the document retrieval index."""

import re


def split_text_into_chunks(text: str, chunk_size: int = 900, overlap: int = 120) -> list[str]:
    """
    Split document text into overlapping chunks.

    Paragraphs are packed together up to ``chunk_size``; paragraphs longer
    than that are split into sentences first. Each chunk after the first is
    prefixed with the last ``overlap`` characters of the previous chunk.

    Args:
        text: Text to chunk
        chunk_size: Target maximum characters per chunk (minimum 200)
        overlap: Characters carried over from the previous chunk

    Returns:
        List of chunk strings
    """
    chunk_size = max(200, chunk_size)
    overlap = max(0, overlap)
    normalized = (text or "").replace("\r\n", "\n").replace("\r", "\n").strip()
    if not normalized:
        return []
    if len(normalized) <= chunk_size:
        return [normalized]

    pieces: list[str] = []
    for paragraph in (p.strip() for p in re.split(r"\n{2,}", normalized)):
        if not paragraph:
            continue
        if len(paragraph) <= chunk_size:
            pieces.append(paragraph)
            continue
        sentences = [s.strip() for s in re.split(r"(?<=[。！？.!?])\s+", paragraph) if s.strip()]
        pieces.extend(sentences if len(sentences) > 1 else [paragraph])

    chunks: list[str] = []
    current = ""
    for piece in pieces:
        if not current:
            current = piece
            continue
        candidate = f"{current}\n\n{piece}"
        if len(candidate) <= chunk_size:
            current = candidate
            continue
        chunks.append(current)
        current = piece
    if current:
        chunks.append(current)

    if overlap <= 0 or len(chunks) <= 1:
        return chunks

    overlapped = [chunks[0]]
    for chunk in chunks[1:]:
        tail = overlapped[-1][-overlap:]
        overlapped.append(f"{tail}\n{chunk}")
    return overlapped
