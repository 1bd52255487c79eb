"""
Example: Using the fetch transport directly

The response comes back as soon as headers arrive; the body is read once,
on demand, and can be cancelled through an AbortController.
"""

import asyncio

from fetchxhr import AbortController, AbortError, FetchTransport


async def main():
    transport = FetchTransport(http2=True, connect_timeout=10)

    response = await transport("https://httpbin.org/gzip")
    print(f"Status: {response.status} (HTTP/{response.http_version})")
    print(f"Decoded body: {(await response.json())['gzipped']}")

    response = await transport("https://httpbin.org/redirect/2")
    print(f"\nRedirected: {response.redirected} -> {response.url}")
    await response.aclose()

    controller = AbortController()
    response = await transport("https://httpbin.org/drip?duration=5", signal=controller.signal)
    asyncio.get_running_loop().call_later(0.5, controller.abort)
    try:
        await response.array_buffer()
    except AbortError as exc:
        print(f"\nBody read aborted: {exc}")


if __name__ == "__main__":
    asyncio.run(main())
