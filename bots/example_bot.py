"""Reference bot that plays DX Party Server via the REST API.

Opens a room as host, joins three players, and plays every round:
  - Upload a goal image (a generated colour swatch) and start the round.
  - Each player submits their five prompts in order.
  - If a Gemini key is available, generate all images in one batch.
  - Score everyone and advance.
Finally prints the scoreboard.

Usage:
    1. Start the server:  uvicorn main:app --reload
    2. Run this bot:      python bots/example_bot.py

Environment variables:
    DX_BASE_URL     : server URL (default: "http://127.0.0.1:8000")
    GEMINI_API_KEY  : set to also exercise image generation
"""

import base64
import io
import os
import random

import httpx
from PIL import Image

BASE_URL = os.environ.get("DX_BASE_URL", "http://127.0.0.1:8000")
GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY", "")

PLAYER_NAMES = ["Alice", "Bob", "Carol"]
PROMPT_IDEAS = {
    "head": ["a pirate hat", "a crown of daisies", "huge round glasses"],
    "torso": ["a knitted sweater", "shining armour", "a tuxedo"],
    "legs": ["roller skates", "striped socks", "cowboy boots"],
    "pose": ["jumping for joy", "striking a superhero pose", "sitting cross-legged"],
    "background": ["a neon city", "a beach at sunset", "outer space"],
}
ROLES = ["head", "torso", "legs", "pose", "background"]


def _goal_image_data_url(colour: tuple[int, int, int]) -> str:
    """A small solid-colour PNG as a data URL."""
    buffer = io.BytesIO()
    Image.new("RGB", (256, 256), colour).save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


def _check(resp: httpx.Response) -> dict:
    """Raise with the server's detail message on failure."""
    if resp.status_code >= 400:
        detail = resp.json().get("detail", resp.text)
        raise SystemExit(f"  -> FAILED ({resp.status_code}): {detail}")
    return resp.json()


def main() -> None:
    """Play a full four-round game."""
    client = httpx.Client(base_url=BASE_URL, timeout=180.0)

    # 0. Open a room
    print("Creating session...")
    created = _check(client.post("/sessions", json={"host_name": "Bot Host"}))
    session_id = created["session"]["id"]
    host = httpx.Client(
        base_url=BASE_URL,
        timeout=180.0,
        headers={"X-Session-Host-Secret": created["host_secret"]},
    )
    print(f"  Room code: {session_id}")

    if GEMINI_API_KEY:
        _check(host.patch(f"/sessions/{session_id}/settings", json={"api_key": GEMINI_API_KEY}))

    # 1. Join players
    player_ids = []
    for name in PLAYER_NAMES:
        joined = _check(client.post(f"/sessions/{session_id}/join", json={"name": name}))
        player_ids.append(joined["player"]["id"])
        print(f"  {name} joined as {joined['player']['id']}")

    # 2. Play every round
    round_count = len(created["session"]["rounds"])
    for round_index in range(round_count):
        print(f"\n--- ROUND {round_index + 1} ---")
        colour = tuple(random.randint(0, 255) for _ in range(3))
        _check(host.post(
            f"/sessions/{session_id}/rounds/{round_index}/goal-image",
            json={"data_url": _goal_image_data_url(colour)},
        ))
        if round_index == 0:
            _check(host.post(f"/sessions/{session_id}/rounds/0/start"))

        for role in ROLES:
            for player_id in player_ids:
                prompt = random.choice(PROMPT_IDEAS[role])
                state = _check(client.post(
                    f"/sessions/{session_id}/rounds/{round_index}/prompts",
                    json={"player_id": player_id, "prompt": prompt},
                ))
        print(f"  All prompts in, status: {state['session']['status']}")

        if GEMINI_API_KEY:
            print("  Generating images...")
            batch = _check(host.post(
                f"/sessions/{session_id}/rounds/{round_index}/generate-batch",
                json={"player_ids": player_ids},
            ))
            for row in batch["results"]:
                outcome = "ok" if row["success"] else row["error"]
                print(f"    {row['player_id']}: {outcome}")

        for player_id in player_ids:
            _check(host.post(
                f"/sessions/{session_id}/rounds/{round_index}/score",
                json={"player_id": player_id, "score": random.randint(1, 5)},
            ))

        advanced = _check(host.post(f"/sessions/{session_id}/rounds/advance"))
        print(f"  Advanced, status: {advanced['session']['status']}")

    # 3. Final scores
    print("\n--- SCOREBOARD ---\n")
    for row in _check(client.get(f"/sessions/{session_id}/scoreboard"))["scores"]:
        print(f"  {row['name']:<8} {row['total']:>3}  {row['round_scores']}")

    client.close()
    host.close()


if __name__ == "__main__":
    main()
