#!/usr/bin/env python3
"""
decipher_batch.py — Digest a directory of papers into summaries and a concept graph.

Given a directory of papers (PDF, TXT, MD, ...), this script:
1. Ingests them one at a time through the metadata and concept extractors
2. Merges extracted concepts into a deduplicated graph
3. Runs the force layout until it settles
4. Writes a JSON digest (library + positioned graph)

Usage:
    python3 decipher_batch.py --dir <path>                    # Digest all files
    python3 decipher_batch.py --dir <path> --out digest.json  # Custom output file
    python3 decipher_batch.py --dir <path> --delay 1          # Seconds between papers
"""

import asyncio
import json
import logging
import sys
import time
from pathlib import Path

from openai import OpenAI

from decipher.config import INTER_CALL_DELAY, MAX_BATCH_SIZE
from decipher.extract import ExtractionService
from decipher.graph import GraphStore, prepare_viz_data
from decipher.ingest import BatchTooLargeError, DocumentInput, Ingestor
from decipher.layout import LayoutEngine
from decipher.library import Library


def collect_inputs(paper_dir):
    paths = sorted(p for p in paper_dir.iterdir()
                   if p.is_file() and not p.name.startswith("."))
    return [DocumentInput.from_path(p) for p in paths]


def print_progress(stage, detail, percent):
    if stage == "ingesting":
        print(f"  [{percent:5.1f}%] {detail}")


async def digest(inputs, delay):
    library = Library()
    graph = GraphStore()
    ingestor = Ingestor(library, graph, ExtractionService(OpenAI()), delay=delay)
    report = await ingestor.ingest(inputs, on_progress=print_progress)
    return library, graph, report


def main():
    logging.basicConfig(level=logging.INFO,
                        format="%(asctime)s %(name)s %(levelname)s %(message)s")
    args = sys.argv[1:]

    paper_dir = None
    out_file = None
    delay = INTER_CALL_DELAY

    i = 0
    while i < len(args):
        if args[i] == '--dir' and i + 1 < len(args):
            paper_dir = Path(args[i + 1])
            i += 2
        elif args[i] == '--out' and i + 1 < len(args):
            out_file = Path(args[i + 1])
            i += 2
        elif args[i] == '--delay' and i + 1 < len(args):
            delay = float(args[i + 1])
            i += 2
        else:
            i += 1

    if paper_dir is None or not paper_dir.is_dir():
        print("Error: --dir <path> is required")
        print(__doc__)
        sys.exit(1)

    if out_file is None:
        out_file = paper_dir / "digest.json"

    inputs = collect_inputs(paper_dir)
    if not inputs:
        print(f"Error: no files in {paper_dir}")
        sys.exit(1)
    if len(inputs) > MAX_BATCH_SIZE:
        print(f"Error: {BatchTooLargeError(len(inputs), MAX_BATCH_SIZE)}")
        sys.exit(1)

    print(f"Digesting {len(inputs)} files from {paper_dir}...")
    library, graph, report = asyncio.run(digest(inputs, delay))

    print(f"\n{report.summary}")
    for name, reason in report.failures:
        print(f"  skipped {name[:50]:50s} ({reason[:60]})")

    # Lay out the graph
    engine = LayoutEngine()
    snapshot = graph.snapshot()
    engine.set_graph(snapshot)
    ticks = engine.run(max_ticks=1000)
    print(f"Layout settled after {ticks} ticks")

    result = {
        "metadata": {
            "created": time.strftime("%Y-%m-%d %H:%M:%S"),
            "attempted": report.attempted,
            "succeeded": report.succeeded,
            "total_concepts": len(graph),
            "total_relations": graph.link_count,
        },
        "documents": [doc.model_dump(mode="json", by_alias=True) for doc in library],
        "graph": prepare_viz_data(snapshot, engine.positions()),
    }
    with open(out_file, 'w') as f:
        json.dump(result, f, indent=2, ensure_ascii=False)

    print(f"\nDigest saved to {out_file}")
    print(f"  {len(library)} papers")
    print(f"  {len(graph)} concepts")
    print(f"  {graph.link_count} relations")

    # Show most connected concepts
    print(f"\n{'='*60}")
    print("MOST CONNECTED CONCEPTS")
    print(f"{'='*60}")
    by_degree = sorted(result["graph"]["nodes"], key=lambda n: n["degree"], reverse=True)
    for n in by_degree[:20]:
        print(f"  {n['id'][:45]:45s}  ({n['degree']} links)")


if __name__ == "__main__":
    main()
