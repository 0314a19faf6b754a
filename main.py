"""
aiguard entry point
Sends one prompt through the cached, retrying, circuit-broken DeepSeek client
"""

import asyncio
import sys

from loguru import logger

from aiguard.ai import DeepSeekClient


async def main(prompt: str, stream: bool = False) -> None:
    logger.info("Starting aiguard...")

    async with DeepSeekClient() as client:
        if stream:
            async for chunk in client.stream_response(prompt):
                print(chunk, end="", flush=True)
            print()
        else:
            print(await client.generate_response(prompt))

        logger.info(f"Health: {client.get_health_status()}")

    logger.info("aiguard stopped")


if __name__ == "__main__":
    args = sys.argv[1:]
    use_stream = "--stream" in args
    args = [a for a in args if a != "--stream"]
    if not args:
        print("Usage: python main.py [--stream] <prompt>")
        sys.exit(2)

    asyncio.run(main(" ".join(args), stream=use_stream))
