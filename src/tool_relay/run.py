# run.py
# Entry point. Config and wiring only. No logic lives here.
#
# Spawns the capability host, discovers its capabilities, and runs an
# interactive loop. Swap the model with TOOL_RELAY_MODEL (any OpenRouter
# model with tool support): https://openrouter.ai/models

import sys

from openai import OpenAIError
from rich.console import Console
from rich.markup import escape
from rich.prompt import Prompt

from tool_relay import display
from tool_relay.config import Settings
from tool_relay.harness import AgentLoop, OpenAIOracle, OracleResponseError
from tool_relay.transport import StdioTransport, TransportError

HOST_COMMAND = [sys.executable, "-m", "tool_relay.host"]

EXAMPLE_QUERIES = [
    "Read the contents of example.txt",
    "What files are in my workspace?",
    "What's the weather in London?",
    "What are today's NBA scores?",
    "Create a file called notes.txt with hello world, then read it back",
    "Which science fiction books are in the database?",
    "What is 2 + 2?  (no tools needed)",
]

stdout = Console()


def main() -> None:
    settings = Settings()
    if not settings.openrouter_api_key:
        display.halt("OPENROUTER_API_KEY is not set in environment variables.")
        sys.exit(1)

    try:
        transport = StdioTransport(HOST_COMMAND, timeout=settings.invoke_timeout)
    except TransportError as exc:
        display.halt(str(exc))
        sys.exit(1)

    try:
        oracle = OpenAIOracle(
            model=settings.model,
            api_key=settings.openrouter_api_key,
            base_url=settings.base_url,
            max_tokens=settings.max_tokens,
        )
        agent = AgentLoop(oracle, transport, max_iterations=settings.max_iterations)
        display.banner(oracle.model, len(agent.catalogue))
        display.catalogue(agent.catalogue)

        stdout.print("\n[bold]Agent ready![/bold] Try these example queries:")
        for query in EXAMPLE_QUERIES:
            stdout.print(f"  • {query}", markup=False)
        stdout.print('  Type "quit" or "exit" to stop.\n')

        while True:
            query = Prompt.ask("You", console=stdout).strip()
            if not query:
                continue
            if query in ("quit", "exit"):
                break
            try:
                answer = agent.process_query(query)
            except (OpenAIError, OracleResponseError) as exc:
                display.halt(f"Oracle failure: {exc}")
                continue
            stdout.print(f"\n[bold green]Assistant:[/bold green] {escape(answer)}\n", highlight=False)
    except TransportError as exc:
        display.halt(f"Capability host failure: {exc}")
        sys.exit(1)
    except (KeyboardInterrupt, EOFError):
        pass
    finally:
        transport.close()


if __name__ == "__main__":
    main()
