# cli.py

import argparse
import asyncio
import json
import sys

from . import config as settings
from .config import IndexConfig, QueryConfig, configure_logging
from .embedder import make_embedder
from .errors import SiteQAError
from .service import SiteQA


def _index_config(args) -> IndexConfig:
    return IndexConfig(
        max_depth=args.depth,
        max_pages=args.max_pages,
        scope=args.scope,
        skip_pdfs=args.skip_pdfs or settings.SKIP_PDFS,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="siteqa", description="Question answering over a crawled website"
    )
    parser.add_argument("--log-level", default=settings.LOG_LEVEL)
    parser.add_argument("--embed-backend", default=settings.EMBED_BACKEND)
    sub = parser.add_subparsers(dest="command", required=True)

    def add_crawl_args(p):
        p.add_argument("url", help="start URL")
        p.add_argument("--depth", type=int, default=settings.MAX_CRAWL_DEPTH)
        p.add_argument("--max-pages", type=int, default=settings.MAX_CRAWLED_PAGES)
        p.add_argument("--scope", default=None, help="URL prefix to stay within")
        p.add_argument("--skip-pdfs", action="store_true")

    index = sub.add_parser("index", help="crawl and index a site, print the summary")
    add_crawl_args(index)

    ask = sub.add_parser("ask", help="crawl a site and rank its chunks for a question")
    add_crawl_args(ask)
    ask.add_argument("question")
    ask.add_argument("--top-k", type=int, default=settings.TOP_K)
    ask.add_argument("--json", action="store_true", help="print the answer as JSON")

    serve = sub.add_parser("serve", help="run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=3000)
    return parser


async def _index(service: SiteQA, args):
    try:
        summary = await service.index_scope(args.url, _index_config(args))
    finally:
        await service.close()
    print(json.dumps(summary.to_dict(), indent=2))


async def _ask(service: SiteQA, args):
    try:
        summary = await service.index_scope(args.url, _index_config(args))
        answer = await service.answer_query(
            args.question, summary.scope, QueryConfig(top_k=args.top_k)
        )
    finally:
        await service.close()

    if args.json:
        print(json.dumps(answer.to_dict(), indent=2))
        return
    print(f"Query: '{answer.question}' ({summary.pages_indexed} pages, {summary.chunk_count} chunks)")
    for item in answer.to_dict()["chunks"]:
        print(f"  Source: {item['source']}#{item['position']}")
        print(
            f"    Score: {item['score']:.4f} "
            f"(semantic {item['semantic']:.3f}, lexical {item['lexical']:.3f}, keyword {item['keyword']:.2f})"
        )
        print(f"    Snippet: {item['snippet']}")
        print("-" * 20)
    print("Sources:")
    for source in answer.sources:
        print(f"  {source}")


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    if args.command == "serve":
        from .app import create_app

        app = create_app(SiteQA(embedder=make_embedder(args.embed_backend)))
        app.run(host=args.host, port=args.port, debug=False, use_reloader=False)
        return 0

    try:
        service = SiteQA(embedder=make_embedder(args.embed_backend))
        handler = _index if args.command == "index" else _ask
        asyncio.run(handler(service, args))
    except SiteQAError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
