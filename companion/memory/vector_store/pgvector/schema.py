"""Idempotent pgvector schema for companion documents.

Every statement is create-if-not-exists (or ``CREATE OR REPLACE``) so the
bootstrap can run on every process start.
"""

# Serializes bootstrap across processes sharing one database.
BOOTSTRAP_LOCK_ID = 715_001

CREATE_EXTENSION = "CREATE EXTENSION IF NOT EXISTS vector"


def create_documents_table(dim: int) -> str:
    return f"""
CREATE TABLE IF NOT EXISTS documents (
    id bigserial PRIMARY KEY,
    content text,
    metadata jsonb DEFAULT '{{}}',
    embedding vector({int(dim)})
)
"""


def create_match_function(dim: int) -> str:
    return f"""
CREATE OR REPLACE FUNCTION match_documents (
    query_embedding vector({int(dim)}),
    match_count int DEFAULT NULL,
    filter jsonb DEFAULT '{{}}'
) RETURNS TABLE (
    id bigint,
    content text,
    metadata jsonb,
    similarity float
)
LANGUAGE plpgsql
AS $$
#variable_conflict use_column
BEGIN
    RETURN QUERY
    SELECT
        id,
        content,
        metadata,
        1 - (documents.embedding <=> query_embedding) AS similarity
    FROM documents
    WHERE metadata @> filter
    ORDER BY documents.embedding <=> query_embedding
    LIMIT match_count;
END;
$$
"""


def bootstrap_statements(dim: int) -> list[str]:
    return [CREATE_EXTENSION, create_documents_table(dim), create_match_function(dim)]


MATCH_DOCUMENTS = (
    "SELECT id, content, metadata, similarity "
    "FROM match_documents(CAST(:embedding AS vector), :match_count, CAST(:filter AS jsonb))"
)

INSERT_DOCUMENT = (
    "INSERT INTO documents (content, metadata, embedding) "
    "VALUES (:content, CAST(:metadata AS jsonb), CAST(:embedding AS vector)) "
    "RETURNING id"
)

EXTENSION_PRESENT = "SELECT 1 FROM pg_extension WHERE extname = 'vector'"
