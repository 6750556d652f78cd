from typing import List

SENTENCE_BREAKS = ('. ', '.\n', '!\n', '?\n', '! ', '? ', '\n\n')


def chunk_text(text: str, chunk_size: int = 1000, overlap: int = 200) -> List[str]:
    """
    Chunk text with overlap for context continuity.

    Args:
        text: Text to chunk
        chunk_size: Target chunk size in characters
        overlap: Overlap between consecutive chunks in characters

    Returns:
        List of non-empty, stripped text chunks
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if overlap < 0 or overlap >= chunk_size:
        raise ValueError("overlap must be in [0, chunk_size)")
    if not text or not text.strip():
        return []

    chunks = []
    start = 0
    text_length = len(text)

    while start < text_length:
        end = min(start + chunk_size, text_length)

        # Try to break at the last sentence boundary inside the window
        if end < text_length:
            best = -1
            for break_char in SENTENCE_BREAKS:
                last_break = text.rfind(break_char, start, end)
                if last_break != -1:
                    best = max(best, last_break + len(break_char))
            # Only accept boundaries that still make forward progress past the overlap
            if best - start > overlap:
                end = best

        chunk = text[start:end].strip()
        if chunk:
            chunks.append(chunk)

        if end >= text_length:
            break
        start = end - overlap

    return chunks
