"""Fixed constants shared across stages."""

from __future__ import annotations

# Rough estimation: ~0.25 tokens per character for English text
TOKENS_PER_CHAR = 0.25

MAX_HYDE_TOKENS = 300
REWRITE_MAX_LENGTH_RATIO = 4
HISTORY_MESSAGE_MAX_CHARS = 500
REFINEMENT_TEMPERATURE = 0.0
FACT_CHECK_MAX_TOKENS = 512

DECLINE_ANSWER = (
    "I could not find relevant information in the available documents to answer "
    "this question."
)
RETRIEVAL_FAILED_ANSWER = (
    "I could not search the document collection for this question, so I cannot "
    "provide an answer right now."
)
SYNTHESIS_FAILED_ANSWER = (
    "I found relevant passages but could not generate an answer from them right now. "
    "The sources retrieved for your question are listed below."
)
CANCELLED_ANSWER = (
    "The request was interrupted before an answer could be generated."
)

STOPWORDS = frozenset(
    """
    a about above after again against all am an and any are as at be because been
    before being below between both but by can could did do does doing down during
    each few for from further had has have having he her here hers herself him
    himself his how i if in into is it its itself just me more most my myself no nor
    not now of off on once only or other our ours ourselves out over own same she
    should so some such than that the their theirs them themselves then there these
    they this those through to too under until up very was we were what when where
    which while who whom why will with would you your yours yourself yourselves
    """.split()
)

# Small general-purpose thesaurus used for query expansion.
SYNONYMS: dict[str, tuple[str, ...]] = {
    "refund": ("reimbursement", "money back", "return"),
    "return": ("refund", "send back"),
    "policy": ("rules", "terms", "guidelines"),
    "cancel": ("terminate", "end"),
    "cancellation": ("termination",),
    "price": ("cost", "fee", "charge"),
    "cost": ("price", "expense", "fee"),
    "fee": ("charge", "cost"),
    "buy": ("purchase", "order"),
    "purchase": ("buy", "order"),
    "order": ("purchase",),
    "delivery": ("shipping", "shipment"),
    "shipping": ("delivery", "shipment"),
    "error": ("failure", "fault", "issue"),
    "bug": ("defect", "issue"),
    "problem": ("issue", "trouble"),
    "fix": ("repair", "resolve"),
    "install": ("setup", "installation"),
    "setup": ("install", "configuration"),
    "configure": ("set up", "configuration"),
    "login": ("sign in", "authentication"),
    "password": ("credentials", "passphrase"),
    "account": ("profile", "user"),
    "employee": ("staff", "worker"),
    "salary": ("pay", "compensation", "wage"),
    "vacation": ("holiday", "leave", "time off"),
    "leave": ("absence", "time off"),
    "contract": ("agreement",),
    "agreement": ("contract",),
    "invoice": ("bill", "receipt"),
    "payment": ("remittance", "transaction"),
    "warranty": ("guarantee",),
    "deadline": ("due date",),
    "manager": ("supervisor",),
    "customer": ("client",),
    "document": ("file", "record"),
    "report": ("summary", "analysis"),
    "meeting": ("appointment",),
    "security": ("protection", "safety"),
    "privacy": ("confidentiality", "data protection"),
}
