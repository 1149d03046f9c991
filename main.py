"""Clarity - cited web answers

Simple CLI for asking questions and following up in one session.
"""

import argparse
import asyncio
import sys

from clarity.api.deps import resolve_credential
from clarity.services.conversation import Conversation

RESET_COMMAND = "/reset"


async def ask(conversation: Conversation, query: str) -> None:
    """Stream one answer, then print it with resolved citations."""
    print(f"Question: {query}")
    print("-" * 50)

    async for event in conversation.submit(query):
        event_type = event.event.value
        data = event.data

        if event_type == "sources_found":
            links = data.get("source_links", [])
            print(f"[*] {len(links)} sources found", file=sys.stderr)

        elif event_type == "answer_chunk":
            print(data.get("chunk", ""), end="", flush=True)

        elif event_type == "answer_complete":
            markdown = data.get("markdown", "")
            print(f"\n\n{'=' * 50}")
            print(markdown or "(no new answer)")

        elif event_type == "error":
            print(f"\n[!] {data.get('message', 'Error')}")


async def run(query: str, api_key: str, interactive: bool) -> None:
    conversation = Conversation(credential=resolve_credential(api_key))
    await ask(conversation, query)
    if not interactive:
        return

    loop = asyncio.get_running_loop()
    while True:
        line = await loop.run_in_executor(None, sys.stdin.readline)
        if not line:
            break
        follow_up = line.strip()
        if not follow_up:
            continue
        if follow_up == RESET_COMMAND:
            conversation.reset()
            print("[*] Session cleared")
            continue
        await ask(conversation, follow_up)


def serve(host: str, port: int) -> None:
    import uvicorn

    uvicorn.run("clarity.main:app", host=host, port=port)


def main():
    parser = argparse.ArgumentParser(description="Clarity cited web answers")
    parser.add_argument("--query", "-q", help="Question to answer")
    parser.add_argument("--api-key", default="", help="Bearer credential (default: from config)")
    parser.add_argument(
        "--interactive",
        "-i",
        action="store_true",
        help=f"Keep reading follow-up questions from stdin ({RESET_COMMAND} clears the session)",
    )
    parser.add_argument("--serve", action="store_true", help="Run the HTTP API instead")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)

    args = parser.parse_args()

    if args.serve:
        serve(args.host, args.port)
        return
    if not args.query:
        parser.error("--query is required unless --serve is given")

    asyncio.run(run(args.query, args.api_key, args.interactive))


if __name__ == "__main__":
    main()
