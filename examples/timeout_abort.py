"""
Example: Timeouts and aborts

A timeout fires ontimeout and nothing else; abort() surfaces the
cancellation through onerror.
"""

import asyncio

from fetchxhr import XMLHttpRequest


async def timeout_example():
    """Give a slow endpoint 500ms to answer."""
    done = asyncio.Event()
    xhr = XMLHttpRequest()
    xhr.timeout = 500  # milliseconds

    def on_timeout():
        print(f"Timed out after {xhr.timeout}ms")
        done.set()

    xhr.ontimeout = on_timeout
    xhr.onload = lambda: done.set()

    xhr.open("GET", "https://httpbin.org/delay/3")
    xhr.send()
    await done.wait()


async def abort_example():
    """Abort a request shortly after sending it."""
    done = asyncio.Event()
    xhr = XMLHttpRequest()

    def on_error(exc):
        print(f"onerror: {type(exc).__name__}: {exc}")
        done.set()

    xhr.onerror = on_error
    xhr.onload = lambda: done.set()

    xhr.open("GET", "https://httpbin.org/delay/3")
    xhr.send()
    await asyncio.sleep(0.1)
    xhr.abort()
    await done.wait()


if __name__ == "__main__":
    print("=== Timeout ===")
    asyncio.run(timeout_example())

    print("\n=== Abort ===")
    asyncio.run(abort_example())
