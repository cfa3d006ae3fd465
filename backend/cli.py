"""Vector store CLI — init, ingest, search, maintenance, and dev server.

Usage:
    python cli.py init                      Create data/<domain>/ dirs and .env from template
    python cli.py ingest [DOMAIN] [--force] Build or load stores (all configured domains by default)
    python cli.py search "QUERY" [--domain D] [-k N]
    python cli.py add "TEXT" ... [--domain D]
    python cli.py clear [--domain D]        Drop cached stores
    python cli.py repair DOMAIN             Delete a domain's cache entries and rebuild
    python cli.py stats                     Per-domain store summary
    python cli.py dev                       Start uvicorn with hot-reload

Documents added with ``add`` are saved next to the cached stores and
replayed on every later run.  With KV_BACKEND=memory nothing outlives the
command, so use redis or postgres for anything but a quick look.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import shutil
import sys
from pathlib import Path

logging.basicConfig(level=logging.INFO, format="%(message)s")
logger = logging.getLogger("vector-cli")


def _build_manager():
    from settings import settings
    from store_manager import create_store_manager

    if settings.KV_BACKEND == "memory":
        logger.warning("KV_BACKEND=memory: cached stores and added documents are lost when this command exits")
    return create_store_manager(settings)


async def _with_manager(fn, *args):
    """Run ``fn(manager, *args)`` and always release the backend."""
    manager = _build_manager()
    try:
        return await fn(manager, *args)
    finally:
        await manager.close()


def cmd_init(args):
    """Scaffold project: create data/<domain>/ dirs, copy .env.example → .env."""
    from settings import settings

    root = Path(__file__).resolve().parent.parent
    data_dir = Path(settings.DATA_DIR)

    for domain in settings.domains:
        folder = data_dir / domain
        if not folder.exists():
            folder.mkdir(parents=True)
            logger.info(f"[+] Created {folder}")
        else:
            count = len(list(folder.glob("*.json")))
            logger.info(f"[=] {folder} already exists ({count} dataset file(s))")

    env_example = root / ".env.example"
    env_file = root / ".env"
    if not env_file.exists() and env_example.exists():
        shutil.copy(env_example, env_file)
        logger.info("[+] Created .env from .env.example")
    elif env_file.exists():
        logger.info("[=] .env already exists")
    else:
        logger.warning("[!] No .env.example found")

    logger.info("")
    logger.info("Next steps:")
    logger.info("  1. Add JSON datasets under data/<domain>/")
    logger.info("  2. Run: python cli.py ingest")
    logger.info("  3. Run: python cli.py dev")


def cmd_ingest(args):
    """Build or load stores and report their state."""
    async def _run(manager):
        if args.domain:
            store = await manager.initialize_store(args.domain, force=args.force)
            return {store.domain: store.state}
        if args.force:
            return await manager.reinitialize()
        return await manager.initialize_all()

    states = asyncio.run(_with_manager(_run))
    failed = False
    for domain, state in states.items():
        logger.info(f"  {domain:<12} {state.value}")
        failed = failed or state.value != "ready"
    if failed:
        sys.exit(1)


def cmd_search(args):
    """Initialize the requested store(s), then print ranked results."""
    async def _run(manager):
        if args.domain:
            await manager.initialize_store(args.domain)
        else:
            await manager.initialize_all()
        return await manager.search_with_scores(args.query, domain=args.domain, limit=args.k)

    hits = asyncio.run(_with_manager(_run))
    print(f"\n─── Search {'─' * 54}\n")
    print(f"  Query: \"{args.query}\"  domain={args.domain or '*'}\n")
    if not hits:
        print("  No results.\n")
    for i, hit in enumerate(hits, 1):
        text = hit.document.text
        if len(text) > 70:
            text = text[:67] + "..."
        domain = hit.document.metadata.get("domain", "?")
        print(f"  {i}. [{domain}] {text}")
        print(f"     Sim: {hit.similarity:.4f}")
    print(f"{'─' * 65}\n")


def cmd_add(args):
    """Embed and append texts to a domain's store and its saved additions."""
    async def _run(manager):
        return await manager.add_documents(args.texts, domain=args.domain)

    added = asyncio.run(_with_manager(_run))
    logger.info(f"Added {added} document(s) to {args.domain or 'default domain'}")


def cmd_clear(args):
    async def _run(manager):
        return await manager.clear(args.domain)

    removed = asyncio.run(_with_manager(_run))
    logger.info(f"Removed {removed} cache record(s) for {args.domain or 'all domains'}")


def cmd_repair(args):
    async def _run(manager):
        return await manager.repair_store(args.domain)

    if asyncio.run(_with_manager(_run)):
        logger.info(f"Repaired {args.domain} store")
    else:
        logger.error(f"Nothing repaired for {args.domain}")
        sys.exit(1)


def cmd_stats(args):
    """Load every configured domain and print its summary."""
    async def _run(manager):
        await manager.initialize_all()
        return manager.stats()

    stats = asyncio.run(_with_manager(_run))
    print(f"\n═══ Stores {'═' * 54}\n")
    for domain, info in stats.items():
        print(f"  {domain}")
        for key, value in info.items():
            print(f"    {key:<14} {value}")
        print()
    print(f"{'═' * 65}\n")


def cmd_dev(args):
    """Start uvicorn development server with hot-reload."""
    import subprocess

    from settings import settings

    host = args.host or settings.HOST
    port = args.port or settings.PORT

    backend_dir = Path(__file__).resolve().parent
    logger.info(f"Starting dev server at http://{host}:{port}")
    subprocess.run(
        [
            sys.executable, "-m", "uvicorn",
            "main:app",
            "--host", host,
            "--port", str(port),
            "--reload",
        ],
        cwd=str(backend_dir),
        check=False,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vectorstore",
        description="Embedded PQ vector store — CLI tools",
    )
    sub = parser.add_subparsers(dest="command", help="Available commands")

    sub.add_parser("init", help="Create data directories and .env")

    p_ingest = sub.add_parser("ingest", help="Build or load vector stores")
    p_ingest.add_argument("domain", nargs="?", help="Single domain (default: all configured)")
    p_ingest.add_argument("--force", action="store_true", help="Ignore the cache and rebuild")

    p_search = sub.add_parser("search", help="Similarity search")
    p_search.add_argument("query", help="Natural-language search query")
    p_search.add_argument("--domain", "-d", help="Restrict to one domain")
    p_search.add_argument("-k", type=int, default=5, help="Max results (default: 5)")

    p_add = sub.add_parser("add", help="Append documents to a store (this process only)")
    p_add.add_argument("texts", nargs="+", help="Document texts")
    p_add.add_argument("--domain", "-d", help="Target domain (default: DEFAULT_DOMAIN)")

    p_clear = sub.add_parser("clear", help="Delete cached stores")
    p_clear.add_argument("--domain", "-d", help="Only this domain")

    p_repair = sub.add_parser("repair", help="Delete a domain's cache entries and rebuild")
    p_repair.add_argument("domain", help="Domain to repair")

    sub.add_parser("stats", help="Per-domain store summary")

    p_dev = sub.add_parser("dev", help="Start development server")
    p_dev.add_argument("--host", help="Bind host")
    p_dev.add_argument("--port", type=int, help="Bind port")

    return parser


COMMANDS = {
    "init": cmd_init,
    "ingest": cmd_ingest,
    "search": cmd_search,
    "add": cmd_add,
    "clear": cmd_clear,
    "repair": cmd_repair,
    "stats": cmd_stats,
    "dev": cmd_dev,
}


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        return
    handler(args)


if __name__ == "__main__":
    main()
