"""Live smoke test: one chat per configured provider, then one via the default.

Reads keys from the environment / .env exactly like the service does.
Run from the repository root:  python backend/verify_providers.py
"""

import asyncio
import os
import sys

# Ensure we can import dobby
sys.path.append(os.path.join(os.path.dirname(os.path.abspath(__file__)), "src"))

from dobby.config import get_settings
from dobby.dependencies import build_context
from dobby.domain.exceptions import DomainError
from dobby.domain.value_objects import CanonicalMessage, RequestOptions
from dobby.shared.observability import configure_logging

PROBE = [
    CanonicalMessage.system("You are a helpful assistant."),
    CanonicalMessage.user('Say "Hello from [Provider Name]" in one sentence.'),
]


async def main() -> int:
    settings = get_settings()
    configure_logging(settings.log_level)

    try:
        ctx = build_context(settings)
    except DomainError as e:
        print(f"❌ {e.message}")
        return 1

    failures = 0
    try:
        print("\nTesting AI providers\n" + "═" * 70)
        for name, available in ctx.gateway.get_available_providers().items():
            if not available:
                print(f"⚠️  {name}: no API key configured")
                continue
            try:
                result = await ctx.gateway.chat(
                    PROBE,
                    RequestOptions(provider=name, max_tokens=50, max_retries=1),
                )
            except DomainError as e:
                failures += 1
                print(f"❌ {name} failed: {e.message}")
                continue
            print(f"✅ {name}: {result.content}")
            print(f"   Model: {result.model}  Tokens: {result.usage.total_tokens}")

        print("═" * 70)
        default = ctx.registry.default_provider().value
        print(f"\nDefault provider ({default}) with full fallback...")
        try:
            result = await ctx.gateway.chat([
                CanonicalMessage.system("You are DobbyAI, a nerdy AI companion."),
                CanonicalMessage.user("Introduce yourself in one sentence."),
            ], RequestOptions(max_tokens=100))
            print(f"✅ {result.provider_name}: {result.content}")
        except DomainError as e:
            failures += 1
            print(f"❌ Default provider failed: {e.message}")
    finally:
        await ctx.aclose()

    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
