"""
Interactive retrieval CLI for inspecting what a scope's corpus returns.

No model calls: queries are tokenized without expansion.

Usage:
   python -m rag.cli --scope biology_plan --root corpus
"""

import sys
import argparse
from pathlib import Path

from rag.corpus import CorpusAccessor, JsonlCorpus
from rag.retrieve import RetrievalEngine


def print_result(corpus: CorpusAccessor, engine: RetrievalEngine, scope_id: str, query: str, top_k: int) -> None:
   result = engine.retrieve(
      corpus.list_chunks(scope_id),
      query,
      top_k,
      corpus.enabled_source_ids(scope_id),
      source_kinds=corpus.source_kinds(scope_id),
      debug=True,
      material_coverage_percent=corpus.material_coverage(scope_id),
      chapter_weightages=corpus.chapter_weightages(scope_id),
   )

   if not result.has_material:
      print("  No material found.")
      return

   likelihood = result.exam_likelihood
   print(f"\n  Selected {len(result.selected_chunks)} chunks  "
         f"aggregate={result.aggregate_score:.2f}  "
         f"exam_likelihood={likelihood.score} ({likelihood.label.value})  "
         f"video={result.used_video_context}")
   print("-" * 70)

   for i, item in enumerate(result.selected_chunks, 1):
      chunk = item.chunk
      text = chunk.text
      snippet = text[:300].replace('\n', ' ')
      if len(text) > 300:
         snippet += '...'
      year = f" {chunk.source_year}" if chunk.source_year else ""
      print(f"\n  [{i}] score={item.score:.3f}  {chunk.source_name}{year}  [{item.source_kind.value}]")
      print(f"      {chunk.source_category.value} / {chunk.section or '-'}")
      print(f"      {snippet}")

   print("-" * 70)
   skipped = [d for d in (result.debug_chunks or []) if not d.selected]
   if skipped:
      print(f"  Ranked but not selected: {len(skipped)}")
      for d in skipped[:5]:
         print(f"      {d.score:.3f}  {d.source_name}  [{d.source_kind.value}]")


def run_cli(corpus: CorpusAccessor, scope_id: str, top_k: int = 5) -> None:
   """Run interactive query loop."""
   engine = RetrievalEngine()
   enabled = corpus.enabled_source_ids(scope_id)

   print("\n" + "=" * 70)
   print("KALEXAM RETRIEVAL SEARCH")
   print("=" * 70)
   print(f"  Scope: {scope_id}")
   print(f"  Chunks: {len(corpus.list_chunks(scope_id))}")
   print(f"  Enabled sources: {'all' if enabled is None else len(enabled)}")
   print()
   print("Commands:")
   print("  <query>          Retrieve chunks for a query")
   print("  :quit            Exit")
   print("=" * 70)

   while True:
      try:
         query = input("\n? ").strip()
      except (KeyboardInterrupt, EOFError):
         print("\nGoodbye!")
         break

      if not query:
         continue

      if query.lower() in (':quit', ':exit', ':q'):
         print("Goodbye!")
         break

      print_result(corpus, engine, scope_id, query, top_k)


def main():
   parser = argparse.ArgumentParser(description="Interactive retrieval search CLI.")
   parser.add_argument('--scope', '-s', required=True,
                       help="Scope id (directory name under root)")
   parser.add_argument('--root', '-r', default='corpus',
                       help="Corpus root directory (default: corpus)")
   parser.add_argument('--top-k', type=int, default=5,
                       help="Nominal chunk budget (default: 5)")
   parser.add_argument('--query', '-q', default=None,
                       help="Run one query and exit")

   args = parser.parse_args()

   scope_dir = Path(args.root) / args.scope
   if not scope_dir.exists():
      print(f"Error: Scope not found at {scope_dir}")
      sys.exit(1)

   corpus = JsonlCorpus(Path(args.root))
   if args.query:
      print_result(corpus, RetrievalEngine(), args.scope, args.query, args.top_k)
      return
   run_cli(corpus, args.scope, top_k=args.top_k)


if __name__ == '__main__':
   main()
