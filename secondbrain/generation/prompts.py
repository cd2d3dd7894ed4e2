"""
Prompt templates for the Second Brain generator.

Keeping templates in a separate module makes them easy to iterate on
without touching generation logic.
"""

# ---------------------------------------------------------------------------
# Main answer prompt
# ---------------------------------------------------------------------------

ANSWER_PROMPT = """\
You are a helpful assistant answering questions about the user's own documents.

Answer the question using ONLY the context below. If the context does not \
contain the answer, say that you could not find it in the documents -- do not guess.
Be concise and quote exact figures and names from the context.

CONTEXT:
{context}

QUESTION: {question}

ANSWER:"""

# ---------------------------------------------------------------------------
# Context fragment separator
# ---------------------------------------------------------------------------

FRAGMENT_SEPARATOR = "\n\n"


def build_prompt(question: str, context: str) -> str:
    """Combine a question and its assembled context into the final prompt."""
    return ANSWER_PROMPT.format(context=context, question=question.strip())
