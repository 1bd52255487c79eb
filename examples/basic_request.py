"""
Example: Callback-driven requests with XMLHttpRequest

send() returns immediately; progress arrives through the on* handlers
while the exchange runs on the asyncio event loop.
"""

import asyncio

from fetchxhr import XMLHttpRequest


async def get_text():
    """GET a page and print it once loaded."""
    done = asyncio.Event()
    xhr = XMLHttpRequest()

    def on_ready_state_change():
        print(f"  ready_state -> {xhr.ready_state.name}")

    def on_load():
        print(f"Status: {xhr.status} {xhr.status_text}")
        print(f"Content-Type: {xhr.get_response_header('content-type')}")
        print(f"Body: {xhr.response_text[:200]}")
        done.set()

    def on_error(exc):
        print(f"Request failed: {exc!r}")
        done.set()

    xhr.onreadystatechange = on_ready_state_change
    xhr.onload = on_load
    xhr.onerror = on_error

    xhr.open("GET", "https://httpbin.org/get")
    xhr.set_request_header("Accept", "application/json")
    xhr.send()
    await done.wait()


async def post_json():
    """POST a form and read the reply as JSON."""
    done = asyncio.Event()
    xhr = XMLHttpRequest()
    xhr.onload = lambda: done.set()
    xhr.onerror = lambda exc: done.set()

    xhr.open("POST", "https://httpbin.org/post")
    xhr.override_mime_type("json")
    xhr.send({"name": "fetchxhr", "mode": "callbacks"})
    await done.wait()

    if xhr.ready_state == XMLHttpRequest.DONE:
        print(f"\nEchoed form: {xhr.response['form']}")


if __name__ == "__main__":
    print("=== GET ===")
    asyncio.run(get_text())

    print("\n=== POST ===")
    asyncio.run(post_json())
