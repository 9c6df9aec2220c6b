"""Centralized query definitions.

This is the single source of truth for all Cypher queries in the application.
Every method returns ``(query, params)`` where params holds any fixed values
the query needs; callers pass the rest at run time.
"""

from typing import Any, LiteralString


class SchemaQueries:
    """Constraints and indexes backing the stores' uniqueness rules."""

    @staticmethod
    def all() -> list[LiteralString]:
        return [
            "CREATE CONSTRAINT chunk_id IF NOT EXISTS FOR (c:Chunk) REQUIRE c.id IS UNIQUE",
            "CREATE CONSTRAINT canonical_chunk_id IF NOT EXISTS FOR (c:CanonicalChunk) REQUIRE c.id IS UNIQUE",
            # One canonical link per chunk; concurrent inserts collapse on this
            "CREATE CONSTRAINT canonical_link_chunk IF NOT EXISTS FOR (l:CanonicalLink) REQUIRE l.chunk_id IS UNIQUE",
            "CREATE CONSTRAINT recall_item_id IF NOT EXISTS FOR (r:RecallItem) REQUIRE r.id IS UNIQUE",
            # Only active items carry an active_key, so this is "one active item per source"
            "CREATE CONSTRAINT recall_item_active_key IF NOT EXISTS FOR (r:RecallItem) REQUIRE r.active_key IS UNIQUE",
            "CREATE CONSTRAINT memory_strength_item IF NOT EXISTS "
            "FOR (s:MemoryStrength) REQUIRE s.recall_item_id IS UNIQUE",
            "CREATE INDEX chunk_user IF NOT EXISTS FOR (c:Chunk) ON (c.user_id)",
            "CREATE INDEX canonical_chunk_user IF NOT EXISTS FOR (c:CanonicalChunk) ON (c.user_id)",
            "CREATE INDEX canonical_link_canonical IF NOT EXISTS FOR (l:CanonicalLink) ON (l.canonical_id)",
            "CREATE INDEX recall_item_user_status IF NOT EXISTS FOR (r:RecallItem) ON (r.user_id, r.status)",
        ]


class ChunkQueries:
    """Reads of ingested chunks plus the one-time embedding write."""

    @staticmethod
    def merge_chunk() -> tuple[LiteralString, dict[str, Any]]:
        query: LiteralString = """
            MERGE (c:Chunk {id: $id})
            SET c += $properties
            RETURN c
            """
        return query, {}

    @staticmethod
    def get_chunk() -> tuple[LiteralString, dict[str, Any]]:
        return "MATCH (c:Chunk {id: $id}) RETURN c", {}

    @staticmethod
    def set_embedding_if_missing() -> tuple[LiteralString, dict[str, Any]]:
        query: LiteralString = """
            MATCH (c:Chunk {id: $id})
            SET c.embedding = coalesce(c.embedding, $embedding)
            RETURN c
            """
        return query, {}

    @staticmethod
    def list_unlinked() -> tuple[LiteralString, dict[str, Any]]:
        query: LiteralString = """
            MATCH (c:Chunk {user_id: $user_id})
            WHERE NOT EXISTS { MATCH (:CanonicalLink {chunk_id: c.id}) }
            RETURN c
            ORDER BY c.created_at ASC, c.id ASC
            LIMIT $limit
            """
        return query, {}


class CanonicalQueries:
    """Canonical chunks and the chunk -> canonical links."""

    @staticmethod
    def get_link() -> tuple[LiteralString, dict[str, Any]]:
        return "MATCH (l:CanonicalLink {chunk_id: $chunk_id}) RETURN l", {}

    @staticmethod
    def list_candidates() -> tuple[LiteralString, dict[str, Any]]:
        query: LiteralString = """
            MATCH (c:CanonicalChunk {user_id: $user_id})
            RETURN c
            ORDER BY c.created_at ASC, c.id ASC
            LIMIT $limit
            """
        return query, {}

    @staticmethod
    def create_canonical() -> tuple[LiteralString, dict[str, Any]]:
        return "CREATE (c:CanonicalChunk) SET c = $properties RETURN c", {}

    @staticmethod
    def insert_link_if_absent() -> tuple[LiteralString, dict[str, Any]]:
        """Insert-or-no-op on the unique chunk_id, only while the target canonical exists.

        The target is write-locked before the link is merged; ``repoint_links``
        takes the same lock, so a merge either sees the new link or removes
        the target first and this query returns no row. The write token marks
        which caller created the node so a racing caller that merely matched
        it can tell.
        """
        query: LiteralString = """
            MATCH (c:CanonicalChunk {id: $canonical_id})
            SET c.link_guard = $token
            MERGE (l:CanonicalLink {chunk_id: $chunk_id})
            ON CREATE SET l += $properties, l.write_token = $token
            WITH c, l, coalesce(l.write_token = $token, false) AS inserted
            REMOVE l.write_token, c.link_guard
            RETURN l, inserted
            """
        return query, {}

    @staticmethod
    def delete_canonical_if_unlinked() -> tuple[LiteralString, dict[str, Any]]:
        query: LiteralString = """
            MATCH (c:CanonicalChunk {id: $id})
            WHERE NOT EXISTS { MATCH (:CanonicalLink {canonical_id: c.id}) }
            WITH c, c.id AS id
            DETACH DELETE c
            RETURN count(id) AS deleted
            """
        return query, {}

    @staticmethod
    def delete_orphans() -> tuple[LiteralString, dict[str, Any]]:
        query: LiteralString = """
            MATCH (c:CanonicalChunk)
            WHERE c.created_at < $created_before
              AND NOT EXISTS { MATCH (:CanonicalLink {canonical_id: c.id}) }
            WITH c, c.id AS id
            DETACH DELETE c
            RETURN count(id) AS deleted
            """
        return query, {}

    @staticmethod
    def repoint_links() -> tuple[LiteralString, dict[str, Any]]:
        query: LiteralString = """
            MATCH (c:CanonicalChunk {id: $from_id})
            SET c.link_guard = $from_id
            WITH c
            OPTIONAL MATCH (l:CanonicalLink {canonical_id: $from_id})
            SET l.canonical_id = $to_id, l.similarity_score = $similarity
            RETURN count(l) AS relinked
            """
        return query, {}

    @staticmethod
    def delete_canonical() -> tuple[LiteralString, dict[str, Any]]:
        return "MATCH (c:CanonicalChunk {id: $id}) DETACH DELETE c", {}

    @staticmethod
    def count_links() -> tuple[LiteralString, dict[str, Any]]:
        return "MATCH (l:CanonicalLink {canonical_id: $canonical_id}) RETURN count(l) AS links", {}

    @staticmethod
    def list_users() -> tuple[LiteralString, dict[str, Any]]:
        return "MATCH (c:CanonicalChunk) RETURN DISTINCT c.user_id AS user_id ORDER BY user_id", {}


class RecallQueries:
    """Recall items and their memory strength rows."""

    @staticmethod
    def create_item() -> tuple[LiteralString, dict[str, Any]]:
        return "CREATE (r:RecallItem) SET r = $properties RETURN r", {}

    @staticmethod
    def get_item() -> tuple[LiteralString, dict[str, Any]]:
        return "MATCH (r:RecallItem {id: $id}) RETURN r", {}

    @staticmethod
    def find_active_by_source() -> tuple[LiteralString, dict[str, Any]]:
        return "MATCH (r:RecallItem {active_key: $active_key}) RETURN r", {}

    @staticmethod
    def delete_item() -> tuple[LiteralString, dict[str, Any]]:
        query: LiteralString = """
            MATCH (r:RecallItem {id: $id})
            OPTIONAL MATCH (s:MemoryStrength {recall_item_id: r.id})
            WITH r, s, r.id AS id
            DETACH DELETE r, s
            RETURN count(id) AS deleted
            """
        return query, {}

    @staticmethod
    def transition_status() -> tuple[LiteralString, dict[str, Any]]:
        query: LiteralString = """
            MATCH (r:RecallItem {id: $id})
            WHERE r.status = $expected
            SET r.status = $status, r.active_key = $active_key
            RETURN r
            """
        return query, {}

    @staticmethod
    def create_strength() -> tuple[LiteralString, dict[str, Any]]:
        return "CREATE (s:MemoryStrength) SET s = $properties RETURN s", {}

    @staticmethod
    def get_strength() -> tuple[LiteralString, dict[str, Any]]:
        return "MATCH (s:MemoryStrength {recall_item_id: $item_id}) RETURN s", {}

    @staticmethod
    def delete_strength() -> tuple[LiteralString, dict[str, Any]]:
        query: LiteralString = """
            MATCH (s:MemoryStrength {recall_item_id: $item_id})
            WITH s, s.recall_item_id AS id
            DELETE s
            RETURN count(id) AS deleted
            """
        return query, {}

    @staticmethod
    def compare_and_set_strength() -> tuple[LiteralString, dict[str, Any]]:
        """Conditional update on the pre-update values of the row."""
        query: LiteralString = """
            MATCH (s:MemoryStrength {recall_item_id: $item_id})
            WHERE s.review_count = $expected_review_count
              AND s.ease_factor = $expected_ease_factor
              AND s.next_review_at = $expected_next_review_at
              AND coalesce(s.last_review_at, -1.0) = coalesce($expected_last_review_at, -1.0)
            SET s += $properties
            RETURN count(s) AS updated
            """
        return query, {}

    @staticmethod
    def due_items() -> tuple[LiteralString, dict[str, Any]]:
        query: LiteralString = """
            MATCH (r:RecallItem {user_id: $user_id, status: $status})
            MATCH (s:MemoryStrength {recall_item_id: r.id})
            WHERE s.next_review_at <= $now
            RETURN r, s
            ORDER BY s.next_review_at ASC
            LIMIT $limit
            """
        return query, {"status": "active"}

    @staticmethod
    def implicit_items() -> tuple[LiteralString, dict[str, Any]]:
        # false sorts before true, so never-reviewed items come first
        query: LiteralString = """
            MATCH (r:RecallItem {user_id: $user_id, status: $status})
            MATCH (s:MemoryStrength {recall_item_id: r.id})
            WHERE s.next_review_at > $now
            RETURN r, s
            ORDER BY s.last_review_at IS NOT NULL ASC, s.last_review_at ASC, s.next_review_at ASC
            LIMIT $limit
            """
        return query, {"status": "active"}

    @staticmethod
    def list_items_by_status() -> tuple[LiteralString, dict[str, Any]]:
        query: LiteralString = """
            MATCH (r:RecallItem {user_id: $user_id, status: $status})
            RETURN r
            ORDER BY r.created_at DESC
            LIMIT $limit
            """
        return query, {}

    @staticmethod
    def count_active() -> tuple[LiteralString, dict[str, Any]]:
        return "MATCH (r:RecallItem {user_id: $user_id, status: $status}) RETURN count(r) AS total", {"status": "active"}

    @staticmethod
    def count_due_before() -> tuple[LiteralString, dict[str, Any]]:
        query: LiteralString = """
            MATCH (r:RecallItem {user_id: $user_id, status: $status})
            MATCH (s:MemoryStrength {recall_item_id: r.id})
            WHERE s.next_review_at <= $until
            RETURN count(r) AS total
            """
        return query, {"status": "active"}

    @staticmethod
    def count_reviewed_since() -> tuple[LiteralString, dict[str, Any]]:
        query: LiteralString = """
            MATCH (r:RecallItem {user_id: $user_id})
            MATCH (s:MemoryStrength {recall_item_id: r.id})
            WHERE s.last_review_at >= $since
            RETURN count(s) AS total
            """
        return query, {}

    @staticmethod
    def recent_review_times() -> tuple[LiteralString, dict[str, Any]]:
        query: LiteralString = """
            MATCH (r:RecallItem {user_id: $user_id})
            MATCH (s:MemoryStrength {recall_item_id: r.id})
            WHERE s.last_review_at IS NOT NULL
            RETURN s.last_review_at AS reviewed_at
            ORDER BY reviewed_at DESC
            LIMIT $limit
            """
        return query, {}
