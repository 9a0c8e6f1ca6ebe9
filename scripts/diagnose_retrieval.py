#!/usr/bin/env python3
"""
Retrieval diagnostics for the Assistly knowledge base.

This script:
1. Embeds a question with the configured local embedding model
2. Runs the vector search (Pinecone, or an in-memory index built from a
   JSON knowledge file)
3. Prints every raw candidate with its similarity
4. Prints similarity statistics and the subset chosen by tiered selection
5. Reports the length of the context that would be sent to the model

Usage:
    python scripts/diagnose_retrieval.py "How many paid leaves does an employee get?" [--top-k 10] [--json]

Options:
    --top-k           Number of raw candidates to request (default: RETRIEVAL_TOP_K)
    --json            Print a machine-readable report instead of text
    --knowledge-file  JSON list of documents/FAQ entries to search in memory
                      instead of Pinecone; entries without an embedding are
                      embedded on the fly, long documents chunk by chunk
                      (CHUNK_SIZE, CHUNK_OVERLAP)
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from assistly.chunker import DEFAULT_CHUNK_OVERLAP, DEFAULT_CHUNK_SIZE, chunk_document, format_chunk
from assistly.context import assemble_context
from assistly.embedder import LocalEmbedder, get_embedder, knowledge_item_text
from assistly.models import Document, KnowledgeItem, MatchCandidate
from assistly.retriever import Retriever, SelectionPolicy, select_candidates, similarity_stats
from assistly.utils import AssistlyError, get_config, setup_logging
from assistly.vector import InMemoryVectorSearch, VectorSearchClient, documents_and_faqs, get_search_client


DEFAULT_QUESTION = "How many paid leaves does an employee get?"
LOW_SIMILARITY_WARNING = 0.5


def load_knowledge_file(
    path: Path,
    embedder: LocalEmbedder,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP
) -> InMemoryVectorSearch:
    """
    Build an in-memory index from a JSON knowledge file.

    Entries that already carry an embedding are indexed as they are. A
    document without one that is longer than ``chunk_size`` is indexed as
    one item per chunk, with ids ``{id}_chunk_{index}``; each chunk is
    embedded with its chunk header.
    """
    with open(path, 'r', encoding='utf-8') as f:
        records = json.load(f)

    items: List[KnowledgeItem] = []
    pending: List[Tuple[KnowledgeItem, str]] = []

    for item in documents_and_faqs(records):
        if item.embedding is not None:
            items.append(item)
        elif isinstance(item, Document) and len(item.content) > chunk_size:
            for chunk in chunk_document(item.content, chunk_size, overlap):
                part = Document(id=f"{item.id}_chunk_{chunk.index}", title=item.title, content=chunk.text)
                items.append(part)
                pending.append((part, format_chunk(chunk, item.title)))
        else:
            items.append(item)
            pending.append((item, knowledge_item_text(item)))

    if pending:
        logger.info("Embedding knowledge items without vectors", count=len(pending))
        vectors = embedder.embed_batch([text for _, text in pending])
        for (item, _), vector in zip(pending, vectors):
            item.embedding = vector

    return InMemoryVectorSearch(items, dimension=embedder.dimension)


def _candidate_row(candidate: MatchCandidate) -> Dict[str, Any]:
    return {
        "id": candidate.id,
        "source": candidate.source.value,
        "title": candidate.title,
        "similarity": candidate.similarity,
        "preview": (candidate.content or "")[:150],
    }


async def run_diagnostics(
    question: str,
    embedder: LocalEmbedder,
    search_client: VectorSearchClient,
    top_k: int,
    policy: Optional[SelectionPolicy] = None,
    max_context_length: int = 6000
) -> Dict[str, Any]:
    """
    Run one retrieval and collect the diagnostic report.

    Returns:
        Dict[str, Any]: question, embedding dimension, raw candidates,
        similarity statistics, selected ids and context length
    """
    retriever = Retriever(embedder, search_client, policy)

    vector = await retriever.embed_query(question)
    if vector is None:
        raise AssistlyError("Query embedding timed out")

    raw = await retriever.search(vector, top_k)
    selected = select_candidates(raw, retriever.policy)
    context = assemble_context(selected, max_context_length)

    return {
        "question": question,
        "embedding_dimension": len(vector),
        "embedding_head": [round(v, 6) for v in vector[:5]],
        "candidates": [_candidate_row(c) for c in raw],
        "stats": similarity_stats(raw),
        "selected": [c.id for c in selected],
        "context_length": len(context.text),
        "context_truncated": context.truncated,
    }


def print_report(report: Dict[str, Any]) -> None:
    """Print a human-readable diagnostic report."""
    print("=" * 60)
    print(f"Query: \"{report['question']}\"")
    print(f"Embedding: {report['embedding_dimension']} dimensions, first values {report['embedding_head']}")
    print("=" * 60)

    candidates: List[Dict[str, Any]] = report["candidates"]
    if not candidates:
        print("No matches found. Check that the knowledge base has embeddings of the right dimension.")
        return

    print(f"Found {len(candidates)} matches:")
    for i, row in enumerate(candidates, 1):
        similarity = "N/A" if row["similarity"] is None else f"{row['similarity']:.4f}"
        print(f"\n[{i}] {row['source'].upper()}: \"{row['title']}\"")
        print(f"   Similarity: {similarity}")
        print(f"   Content preview: {row['preview']}...")

    stats = report["stats"]
    print("\n" + "=" * 60)
    print("Similarity Score Analysis:")
    print(f"   Max similarity: {stats['max']:.4f}")
    print(f"   Min similarity: {stats['min']:.4f}")
    print(f"   Avg similarity: {stats['mean']:.4f}")
    print(f"   Matches > 0.5: {stats['above_0_5']}")
    print(f"   Matches > 0.7: {stats['above_0_7']}")

    if stats["max"] < LOW_SIMILARITY_WARNING:
        print("\nWARNING: Low similarity scores. The query may not match the knowledge base content.")

    print("\nSelected for context: " + (", ".join(report["selected"]) or "none"))
    truncated = " (truncated)" if report["context_truncated"] else ""
    print(f"Context length: {report['context_length']} characters{truncated}")


def main():
    """Main entry point for the diagnostics script."""
    parser = argparse.ArgumentParser(
        description="Diagnose retrieval quality for a question",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument("question", nargs="?", default=DEFAULT_QUESTION, help="Question to retrieve for")
    parser.add_argument("--top-k", type=int, default=None, help="Number of raw candidates to request")
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    parser.add_argument("--knowledge-file", type=Path, default=None,
                        help="Search an in-memory index built from this JSON file")
    args = parser.parse_args()

    setup_logging("WARNING")
    config = get_config()
    top_k = args.top_k or config["RETRIEVAL_TOP_K"]

    try:
        embedder = get_embedder()
        if args.knowledge_file:
            search_client = load_knowledge_file(
                args.knowledge_file, embedder, config["CHUNK_SIZE"], config["CHUNK_OVERLAP"]
            )
        else:
            search_client = get_search_client()

        report = asyncio.run(run_diagnostics(
            args.question,
            embedder,
            search_client,
            top_k,
            SelectionPolicy.from_config(config),
            config["MAX_CONTEXT_LENGTH"]
        ))
    except (AssistlyError, OSError, ValueError) as e:
        logger.error("Retrieval diagnostics failed", error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.json:
        print(json.dumps(report, indent=2))
    else:
        print_report(report)


if __name__ == "__main__":
    main()
