from prometheus_client import Counter, Histogram

# ----------------------------
# Vector store selection/fallback
# ----------------------------

VECTOR_SELECTED_TOTAL = Counter(
    "vector_selected_total",
    "Vector store selected at initialization",
    ["backend"],  # pgvector | qdrant | none
)

VECTOR_INIT_FALLBACKS = Counter(
    "vector_init_fallbacks_total",
    "Vector store initialization fallbacks to degraded mode (non-fatal)",
    ["requested", "reason"],
)

VECTOR_SEARCH_FAILURES = Counter(
    "vector_search_failures_total",
    "Semantic searches that failed and returned no context",
    ["backend"],
)

# ----------------------------
# Latency
# ----------------------------

# Embedding latency by backend (openai | stub)
EMBEDDING_LATENCY_SECONDS = Histogram(
    "embedding_latency_seconds",
    "Embedding call latency (seconds)",
    ["backend"],
)

# Vector store operation latency (backend-specific ops aggregated)
VECTOR_OP_LATENCY_SECONDS = Histogram(
    "vector_op_latency_seconds",
    "Vector store operation latency (seconds)",
    ["operation"],
)

# ----------------------------
# Chat history
# ----------------------------

HISTORY_OPS_TOTAL = Counter(
    "history_ops_total",
    "Chat history cache operations",
    ["operation"],  # append | read | seed | skipped
)
