"""Command-line chat loop for the Lumina study assistant."""
import asyncio
import argparse

from dotenv import load_dotenv

# Load environment variables from .env file BEFORE importing modules that depend on them
load_dotenv()

from shared.config import Configuration
from agents import StudyAssistant
from agents.chat_agent import enable_chat_logging
from database import init_db

ACTIONS = ("summarise", "flashcards", "quiz", "journal", "research")


async def main(user_id: str, enable_logging: bool = False, log_level: str = "info"):
    """Run the interactive chat loop."""
    print("=" * 60)
    print("Lumina Study Assistant")
    print("=" * 60)
    print()
    if enable_logging:
        level = {"debug": 10, "info": 20, "warning": 30, "error": 40}.get(log_level.lower(), 20)
        enable_chat_logging(level=level)
        print(f"Logging enabled at level: {log_level.upper()}")

    # Initialize configuration
    try:
        config = Configuration()
        config.validate()
    except ValueError as e:
        print(f"Configuration error: {e}")
        print("\nPlease ensure:")
        print("1. You have a .env file with OPENAI_API_KEY")
        print("2. You have a model_config.json file (or use defaults)")
        return

    init_db()
    print(f"Using models:")
    print(f"  - Orchestrator: {config.orchestrator_model}")
    print(f"  - Text: {config.text_model}")
    print(f"Research search: {'enabled' if config.tavily_api_key else 'disabled (no TAVILY_API_KEY)'}")
    print()

    assistant = StudyAssistant(config)
    history = []
    action = None
    deep_search = False

    print("Chat with Lumina. Type 'quit', 'exit', or 'q' to end.")
    print("Type 'reset' to clear conversation history, 'help' for commands.")
    print("-" * 60)
    print()

    while True:
        try:
            user_input = input("You: ").strip()

            if not user_input:
                continue

            # Handle special commands
            if user_input.lower() in ['quit', 'exit', 'q']:
                print("\nGoodbye!")
                break

            if user_input.lower() == 'reset':
                history = []
                print("Chat history cleared.\n")
                continue

            if user_input.lower() == 'help':
                print("\nAvailable commands:")
                print("  - quit/exit/q: Exit the chat")
                print("  - reset: Clear conversation history")
                print("  - deep: Toggle verified research for every message")
                print(f"  - /action <name>: Use a response preset ({', '.join(ACTIONS)}), '/action' alone to clear")
                print()
                continue

            if user_input.lower() == 'deep':
                deep_search = not deep_search
                print(f"Verified research {'on' if deep_search else 'off'}.\n")
                continue

            if user_input.lower().startswith('/action'):
                _, _, name = user_input.partition(" ")
                action = name.strip() or None
                print(f"Preset: {action or 'general chat'}\n")
                continue

            history.append({"role": "user", "content": user_input})
            print("\nLumina: ", end="", flush=True)
            reply = []
            async for token in assistant.stream(
                user_id, history, action=action, deep_search=deep_search
            ):
                reply.append(token)
                print(token, end="", flush=True)
            print("\n")
            history.append({"role": "assistant", "content": "".join(reply)})

        except KeyboardInterrupt:
            print("\n\nGoodbye!")
            break
        except Exception as e:
            print(f"\nError: {e}")
            print("Type 'reset' to clear history and try again.\n")


def cli():
    parser = argparse.ArgumentParser(description="Lumina Study Assistant")
    parser.add_argument("--user-id", required=True, help="User id whose study data the assistant acts on")
    parser.add_argument("--log", action="store_true", help="Enable chat logging to console and logs/chat.log")
    parser.add_argument("--log-level", default="info", choices=["debug", "info", "warning", "error"], help="Logging level when --log is set")
    args = parser.parse_args()
    asyncio.run(main(args.user_id, enable_logging=args.log, log_level=args.log_level))


if __name__ == "__main__":
    cli()
