"""All prompt templates for the RAG pipeline."""

from grounded_rag.config.constants import HISTORY_MESSAGE_MAX_CHARS

QUERY_REWRITE_SYSTEM = """You rewrite search queries. Return ONLY the rewritten query on a single line, with no explanation."""

QUERY_REWRITE_PROMPT = """Rewrite the following question as a clear, standalone search query. Resolve pronouns and references using the conversation so far, fix spelling, and keep every constraint the user stated.

{history_block}Question: {query}"""

HYDE_SYSTEM = """You write short factual passages that could appear in a reference document."""

HYDE_PROMPT = """Write a concise passage (3-5 sentences) that would directly answer the question below, as it might appear in a policy document, manual or knowledge base article. Do not mention the question.

Question: {query}"""

ANSWER_GENERATION_SYSTEM = """You are a precise, factual assistant. Answer questions using ONLY the provided sources.
Rules:
- Cite sources using [1], [2], etc. markers matching the source numbers, placed at the end of the sentence they support.
- If the sources don't contain enough information, say so clearly.
- Never make up information not present in the sources.
- Be concise and direct."""

ANSWER_GENERATION_NO_CITATIONS_SYSTEM = """You are a precise, factual assistant. Answer questions using ONLY the provided sources.
Rules:
- If the sources don't contain enough information, say so clearly.
- Never make up information not present in the sources.
- Be concise and direct."""

ANSWER_GENERATION_PROMPT = """Question: {query}

Sources:
{evidence_block}

Provide a clear answer based on the sources above."""

REFINEMENT_PROMPT = """Question: {query}

Sources:
{evidence_block}

Previous draft:
{draft}

The previous draft was not well supported by the sources. Rewrite it so that every sentence is directly backed by a source and carries its [n] citation marker. Remove statements the sources do not support."""

FACT_CHECK_PROMPT = """Check the following answer against the provided evidence.

Answer: {answer}

Evidence:
{evidence_block}

List every claim in the answer that is NOT directly supported by the evidence.
Return a JSON object:
- "unsupported_claims": list of claim strings (empty if everything is supported)"""


def format_evidence_block(texts: list[str]) -> str:
    """Format passages as a numbered source block for prompts."""
    return "\n\n".join(f"[{i}] {text}" for i, text in enumerate(texts, 1))


def format_history_block(history, turns: int) -> str:
    """Render the last ``turns`` messages of a conversation, or nothing."""
    if turns <= 0 or not history:
        return ""
    lines = ["Conversation so far:"]
    for message in list(history)[-turns:]:
        lines.append(f"{message.role}: {message.content[:HISTORY_MESSAGE_MAX_CHARS]}")
    return "\n".join(lines) + "\n\n"
