"""Command-line viewer example.

Demonstrates:
- WebSocket connection to the relay's viewer endpoint
- Status, transcript and assistant text display
- Audio chunk reception (counted, not played)
- Optional audio muting via toggle_audio

Usage:
    python examples/viewer_client.py
    python examples/viewer_client.py --url ws://localhost:3000/viewer
    python examples/viewer_client.py --mute
"""

import argparse
import asyncio
import base64
import json
import sys
from typing import Any

import websockets
from websockets.asyncio.client import ClientConnection


async def set_audio(ws: ClientConnection, enabled: bool) -> None:
    """Ask the relay to enable or mute audio for this viewer.

    Args:
        ws: WebSocket connection
        enabled: Whether audio chunks should be delivered
    """
    await ws.send(json.dumps({"type": "toggle_audio", "enabled": enabled}))
    print(f"→ Sent toggle_audio (enabled={enabled})")


async def receive_broadcast(ws: ClientConnection) -> int:
    """Print broadcast messages until the relay closes the connection.

    Args:
        ws: WebSocket connection

    Returns:
        Total number of audio bytes received
    """
    audio_bytes = 0
    streaming = False

    async for raw in ws:
        message: dict[str, Any] = json.loads(raw)
        kind = message.get("type")

        if kind == "text":
            # Assistant text arrives in chunks; keep them on one line
            print(message["content"], end="", flush=True)
            streaming = True
            continue

        if streaming:
            print()
            streaming = False

        if kind == "status":
            details = []
            if "viewerCount" in message:
                details.append(f"viewers={message['viewerCount']}")
            if "adminConnected" in message:
                details.append(f"admin={'yes' if message['adminConnected'] else 'no'}")
            suffix = f" ({', '.join(details)})" if details else ""
            print(f"← Status: {message['message']}{suffix}")

        elif kind == "transcript":
            print(f"← Admin: {message['content']}")

        elif kind == "audio":
            audio_bytes += len(base64.b64decode(message["data"]))

        else:
            print(f"⚠  Unexpected message type: {kind}")

    return audio_bytes


async def run_viewer(url: str = "ws://localhost:3000/viewer", mute: bool = False) -> None:
    """Connect to the relay as a viewer and print the broadcast.

    Args:
        url: WebSocket URL of the viewer endpoint
        mute: Disable audio delivery after connecting
    """
    print(f"Connecting to {url}...")

    async with websockets.connect(url) as ws:
        print(f"✓ Connected to {url}\n")

        if mute:
            await set_audio(ws, False)

        audio_bytes = await receive_broadcast(ws)

    print(f"\n✓ Broadcast ended ({audio_bytes / 1024:.2f} KB of audio received)")


def main() -> None:
    """Parse arguments and run viewer."""
    parser = argparse.ArgumentParser(description="Command-line broadcast viewer")
    parser.add_argument(
        "--url",
        default="ws://localhost:3000/viewer",
        help="Viewer endpoint URL (default: ws://localhost:3000/viewer)",
    )
    parser.add_argument(
        "--mute",
        action="store_true",
        help="Do not receive assistant audio",
    )
    args = parser.parse_args()

    try:
        asyncio.run(run_viewer(url=args.url, mute=args.mute))
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(0)
    except ConnectionRefusedError:
        print("\n✗ Connection refused. Make sure the relay is running:\n  broadcast-server")
        sys.exit(1)
    except Exception as e:
        print(f"\n✗ Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
