"""
TCP server for automated flag submissions.

Protocol: the server greets the client, the client sends one line
``user_id,challenge_id,flag[,event_id]`` and the server answers with one
line describing the result, then closes the connection.
"""

import asyncio
import logging
from typing import Any

from .errors import FlagboardError
from .models import Identity, Scope
from .scoring import ScoringEngine

logger = logging.getLogger(__name__)

MAX_LINE_BYTES = 1024
MAX_USER_ID_LENGTH = 64


class TCPServer:
    """Handles TCP socket connections and flag submissions."""

    def __init__(
        self,
        engine: ScoringEngine,
        config: Any,
    ) -> None:
        self.engine = engine
        self.config = config

        portal_name = self.config.get("portal_name")
        welcome_text = (
            f"Welcome to {portal_name}! Submit in format: "
            "user_id,challenge_id,flag[,event_id]\n"
        )
        self.welcome_msg = welcome_text.encode("utf-8")

    async def process_line(self, message: str) -> str:
        """
        Score one submission line.

        The flag is the third field; an optional fourth field names the
        event. Flags containing commas must be submitted over HTTP.

        @param message: Decoded line sent by the client
        @return: Response line (always newline terminated)
        """
        parts = message.split(",")

        if len(parts) not in (3, 4):
            return "Error: Invalid message format. Expected: user_id,challenge_id,flag[,event_id]\n"

        user_id = parts[0].strip()
        challenge_id = parts[1].strip()
        flag = parts[2]
        event_id = parts[3].strip() if len(parts) == 4 else ""

        if not user_id:
            return "Error: User id cannot be empty\n"
        if len(user_id) > MAX_USER_ID_LENGTH:
            return f"Error: User id too long (max {MAX_USER_ID_LENGTH} characters)\n"
        if not challenge_id:
            return "Error: Challenge id cannot be empty\n"
        if not flag.strip():
            return "Error: Flag cannot be empty\n"

        try:
            result = await self.engine.submit(
                Identity(user_id=user_id),
                challenge_id,
                flag,
                Scope.from_event_id(event_id or None),
            )
        except FlagboardError as e:
            return f"Error: {e}\n"

        if not result.is_correct:
            return "Incorrect\n"
        if result.already_credited:
            return "Correct (already solved, +0 points)\n"
        return f"Correct +{result.points_awarded} points\n"

    async def handle_socket_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """
        Handle individual TCP client connection (async).

        @param reader: AsyncIO stream reader for client connection
        @param writer: AsyncIO stream writer for client connection
        """
        client_addr = writer.get_extra_info("peername")
        logger.debug("Socket client connected: %s", client_addr)

        try:
            writer.write(self.welcome_msg)
            await writer.drain()

            data = await reader.read(MAX_LINE_BYTES)
            if not data:
                logger.debug("No data received from %s", client_addr)
                return

            try:
                message = data.decode("utf-8").strip("\x00").strip("\r\n")
                response = await self.process_line(message)
            except UnicodeDecodeError:
                response = "Error: Invalid character encoding\n"

            writer.write(response.encode("utf-8"))
            await writer.drain()

        except (ConnectionError, OSError) as e:
            logger.warning("Error handling socket client %s: %s", client_addr, e)
            try:
                writer.write(b"Server error occurred\n")
                await writer.drain()
            except (ConnectionError, OSError):
                pass

        finally:
            try:
                writer.close()
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass
            logger.debug("Socket client disconnected: %s", client_addr)

    async def start_tcp_server(
        self,
        host: str = "0.0.0.0",
        port: int = 8080,
    ) -> asyncio.AbstractServer:
        """
        Start the TCP socket server.

        @param host: Host address to bind the server to (default "0.0.0.0")
        @param port: Port number to listen on (default 8080)
        @return: TCP server instance
        """
        server = await asyncio.start_server(self.handle_socket_client, host, port)
        logger.info("Socket server running on %s:%s", host, port)

        return server
