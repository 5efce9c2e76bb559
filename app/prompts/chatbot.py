"""Prompts for chatbot conversations."""

from typing import List, Optional

from app.core.config import settings

# Used when a chatbot (or an operator preview) has no prompt of its own
DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant. Answer the user's questions clearly and concisely."
)

# Appended when answers are grounded through a vector store search tool
CITATION_SUPPRESSION_DIRECTIVE = (
    "\n\nWhen you use information from the attached knowledge base, answer naturally. "
    "Never mention, cite or reference file names, document titles, file IDs or "
    "source markers, and do not say that you searched files."
)

# Inline document context for chatbots answering from their uploaded documents
DOCUMENT_CONTEXT_SECTION = (
    "Here is additional context to help answer the user's questions:\n{context}"
)

TRUNCATION_SUFFIX = "..."


def build_instructions(system_prompt: Optional[str], vector_store_id: Optional[str] = None) -> str:
    """
    Build the system instructions for one completion call.

    Args:
        system_prompt: Chatbot prompt text. Falls back to the default prompt when blank.
        vector_store_id: Attached vector store. Adds the citation suppression directive.

    Returns:
        Complete instructions string.
    """
    instructions = system_prompt if system_prompt and system_prompt.strip() else DEFAULT_SYSTEM_PROMPT
    if vector_store_id:
        instructions += CITATION_SUPPRESSION_DIRECTIVE
    return instructions


def build_document_context(documents: List[str], max_length: Optional[int] = None) -> Optional[str]:
    """
    Render bound documents as a context block, or None when there are none.

    Documents are joined with blank lines and cut to ``max_length`` characters.
    """
    texts = [doc for doc in documents if doc and doc.strip()]
    if not texts:
        return None

    limit = max_length or settings.RAG_MAX_CONTEXT_LENGTH
    combined = "\n\n".join(texts)
    if len(combined) > limit:
        combined = combined[:limit] + TRUNCATION_SUFFIX
    return DOCUMENT_CONTEXT_SECTION.format(context=combined)
