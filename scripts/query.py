#!/usr/bin/env python
"""Ask the knowledge base a question from the command line.

Usage:
    python scripts/query.py "How do I write a minting policy in Aiken?"
    python scripts/query.py "How do I deploy to preprod?" --category deployment
    python scripts/query.py "What is double satisfaction?" --answer
"""
import argparse
import asyncio
import json
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import structlog

from cardano_rag import config
from cardano_rag.logs import configure_logging
from cardano_rag.rag.categorizer import CATEGORIES
from cardano_rag.rag.errors import RAGError
from cardano_rag.rag.service import get_knowledge_base

logger = structlog.get_logger()


def print_response(response, as_json: bool) -> None:
    if as_json:
        print(json.dumps(response.to_dict(), indent=2))
        return

    if response.answer is not None:
        print(f"\n{response.answer}\n")
        print(f"{'-' * 60}")

    if not response.answer_context:
        print("\nNo matching chunks found.\n")
        return

    for rank, result in enumerate(response.answer_context, 1):
        preview = " ".join(result.text.split())[:200]
        print(f"\n[{rank}] {result.source}  ({result.category}, score {result.score:.3f})")
        print(f"    {preview}")

    print(f"\nSources: {', '.join(response.sources)}\n")


async def main():
    """Main entry point for query script."""
    parser = argparse.ArgumentParser(description="Query the indexed documentation")

    parser.add_argument("question", help="Question to ask")

    parser.add_argument(
        "--category",
        choices=CATEGORIES,
        default=None,
        help="Search a single category instead of routing by keywords",
    )

    parser.add_argument(
        "--top-k",
        type=int,
        default=None,
        help=f"Number of results (default: {config.RETRIEVAL_TOP_K})",
    )

    parser.add_argument(
        "--answer",
        action="store_true",
        help=f"Generate an answer with {config.CHAT_MODEL}",
    )

    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the raw JSON response",
    )

    args = parser.parse_args()

    configure_logging("WARNING")

    try:
        knowledge_base = await get_knowledge_base()
        if args.answer:
            response = await knowledge_base.answer(
                args.question, category=args.category, top_k=args.top_k
            )
        else:
            response = await knowledge_base.query(
                args.question, category=args.category, top_k=args.top_k
            )
    except RAGError as e:
        print(f"\n❌ Error: {e}\n")
        logger.error("query_script_failed", error=str(e), error_type=type(e).__name__)
        sys.exit(1)

    print_response(response, args.json)


if __name__ == "__main__":
    asyncio.run(main())
