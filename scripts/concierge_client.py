"""
Aurelia terminal client.

Log in (or register and verify) as a member, then talk to Orla:
- streamed NDJSON replies by default, blocking with --no-stream
- /unread shows unread concierge messages
- /credits shows the credit balance
"""

import argparse
import asyncio
import json
import os
from datetime import datetime, timedelta

import httpx
from dotenv import load_dotenv

load_dotenv()

CYAN = "\033[96m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
RED = "\033[91m"
BLUE = "\033[94m"
RESET = "\033[0m"
BOLD = "\033[1m"


class AuthClient:
    """Holds the member's tokens and refreshes them before they expire."""

    def __init__(self, base_url: str):
        self.base_url = base_url
        self.access_token: str | None = None
        self.refresh_token: str | None = None
        self.token_expires_at: datetime | None = None

    def _store(self, data: dict) -> None:
        self.access_token = data["access_token"]
        self.refresh_token = data.get("refresh_token", self.refresh_token)
        self.token_expires_at = datetime.now() + timedelta(seconds=data.get("expires_in", 1800))

    async def register(self, email: str, password: str, display_name: str | None = None) -> dict:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                f"{self.base_url}/api/v1/auth/register",
                json={"email": email, "password": password, "display_name": display_name},
            )
            response.raise_for_status()
            return response.json()

    async def verify_email(self, email: str, code: str) -> dict:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                f"{self.base_url}/api/v1/auth/verify-email",
                json={"email": email, "code": code},
            )
            response.raise_for_status()
            return response.json()

    async def login(self, email: str, password: str) -> dict:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                f"{self.base_url}/api/v1/auth/login",
                json={"email": email, "password": password},
            )
            response.raise_for_status()
            data = response.json()
            self._store(data)
            return data

    async def refresh(self) -> bool:
        if not self.refresh_token:
            return False
        async with httpx.AsyncClient() as client:
            response = await client.post(
                f"{self.base_url}/api/v1/auth/refresh",
                json={"refresh_token": self.refresh_token},
            )
        if response.status_code != 200:
            return False
        self._store(response.json())
        return True

    async def headers(self) -> dict:
        # Refresh a minute early
        if self.token_expires_at and datetime.now() >= self.token_expires_at - timedelta(minutes=1):
            await self.refresh()
        return {"Authorization": f"Bearer {self.access_token}"} if self.access_token else {}


async def show_unread(client: httpx.AsyncClient, url: str, headers: dict) -> None:
    response = await client.get(f"{url}/api/v1/concierge/unread", headers=headers)
    if response.status_code != 200:
        print(f"{RED}Error {response.status_code}: {response.text}{RESET}\n")
        return
    print(f"{CYAN}Unread messages: {response.json()['unread']}{RESET}\n")


async def show_credits(client: httpx.AsyncClient, url: str, headers: dict) -> None:
    response = await client.get(f"{url}/api/v1/credits/balance", headers=headers)
    if response.status_code != 200:
        print(f"{RED}Error {response.status_code}: {response.text}{RESET}\n")
        return
    data = response.json()
    balance = "unlimited" if data["is_unlimited"] else data["balance"]
    print(f"{CYAN}Credits: {balance} (tier: {data.get('tier') or 'none'}){RESET}\n")


async def stream_reply(client: httpx.AsyncClient, endpoint: str, payload: dict, headers: dict) -> None:
    async with client.stream("POST", endpoint, json=payload, headers=headers) as response:
        if response.status_code != 200:
            error_text = await response.aread()
            print(f"{RED}Error {response.status_code}: {error_text.decode()}{RESET}")
            return

        async for line in response.aiter_lines():
            if not line:
                continue
            try:
                chunk = json.loads(line)
            except json.JSONDecodeError:
                continue

            if chunk.get("type") == "content":
                print(chunk.get("content", ""), end="", flush=True)
            elif chunk.get("type") == "error":
                print(f"\n{RED}Error: {chunk.get('content')}{RESET}", end="")
        print()


async def chat_loop(url: str, stream: bool, auth_client: AuthClient) -> None:
    print(f"{BOLD}--- Aurelia Concierge ---{RESET}")
    print(f"Target: {CYAN}{url}{RESET}")
    print(f"Mode:   {GREEN}{'Streaming' if stream else 'Blocking'}{RESET}")
    print(f"\nType '{RED}exit{RESET}' or '{RED}quit{RESET}' to stop.")
    print(f"Type '{BLUE}/unread{RESET}' or '{BLUE}/credits{RESET}' for your account.\n")

    endpoint = f"{url}/api/v1/concierge/reply"

    async with httpx.AsyncClient(timeout=120.0) as client:
        while True:
            try:
                user_input = input(f"{BOLD}You > {RESET}").strip()
            except EOFError:
                break
            if not user_input:
                continue
            if user_input.lower() in ("exit", "quit"):
                break

            headers = await auth_client.headers()
            if user_input.lower() == "/unread":
                await show_unread(client, url, headers)
                continue
            if user_input.lower() == "/credits":
                await show_credits(client, url, headers)
                continue

            print(f"{BOLD}Orla > {RESET}", end="", flush=True)
            payload = {"content": user_input, "stream": stream}
            try:
                if stream:
                    await stream_reply(client, endpoint, payload, headers)
                    continue

                response = await client.post(endpoint, json=payload, headers=headers)
                if response.status_code != 200:
                    print(f"{RED}Error {response.status_code}: {response.text}{RESET}")
                    continue
                print(response.json()["reply"]["content"])
            except httpx.HTTPError as e:
                print(f"\n{RED}Client Error: {e}{RESET}")


async def interactive_auth(base_url: str, email: str | None, password: str | None) -> AuthClient | None:
    auth_client = AuthClient(base_url)

    if email and password:
        try:
            await auth_client.login(email, password)
            return auth_client
        except httpx.HTTPStatusError as e:
            print(f"{RED}Login failed: {e.response.text}{RESET}\n")
            return None

    print(f"\n{BOLD}--- Sign in ---{RESET}")
    print("1. Login (existing member)")
    print("2. Register (new member)")
    choice = input(f"\n{BOLD}Choice (1-2): {RESET}").strip()

    email = input(f"{BOLD}Email: {RESET}").strip()
    if choice == "2":
        password = input(f"{BOLD}Password (min 8 chars, must include letter and digit): {RESET}").strip()
        display_name = input(f"{BOLD}Display Name (optional): {RESET}").strip() or None
        try:
            await auth_client.register(email, password, display_name)
        except httpx.HTTPStatusError as e:
            print(f"{RED}Registration failed: {e.response.text}{RESET}\n")
            return None
        print(f"{GREEN}Registration successful!{RESET}")
        code = input(f"{BOLD}Enter the verification code from your inbox: {RESET}").strip()
        try:
            await auth_client.verify_email(email, code)
        except httpx.HTTPStatusError as e:
            print(f"{RED}Verification failed: {e.response.text}{RESET}\n")
            return None
        print(f"{GREEN}Email verified!{RESET}")
    else:
        password = input(f"{BOLD}Password: {RESET}").strip()

    try:
        await auth_client.login(email, password)
    except httpx.HTTPStatusError as e:
        print(f"{RED}Login failed: {e.response.text}{RESET}\n")
        return None
    print(f"{GREEN}Welcome back.{RESET}\n")
    return auth_client


def main():
    parser = argparse.ArgumentParser(description="Aurelia Concierge Terminal Client")
    parser.add_argument("--url", default=os.getenv("AURELIA_API_URL", "http://localhost:8000"), help="API Base URL")
    parser.add_argument("--no-stream", action="store_true", help="Disable streaming")
    args = parser.parse_args()

    try:
        auth_client = asyncio.run(
            interactive_auth(args.url, os.getenv("AURELIA_EMAIL"), os.getenv("AURELIA_PASSWORD"))
        )
    except KeyboardInterrupt:
        print(f"\n{YELLOW}Sign in cancelled.{RESET}")
        return
    if auth_client is None:
        return

    try:
        asyncio.run(chat_loop(args.url, not args.no_stream, auth_client))
    except KeyboardInterrupt:
        print("\nExiting...")


if __name__ == "__main__":
    main()
