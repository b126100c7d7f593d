"""
Main PortalSystem class that wires the scoring core to its servers.
"""

import logging
from typing import Optional

from aiohttp import web, web_runner
import aiohttp_cors

from .attribution import AttributionResolver
from .catalog import ChallengeCatalog
from .config import FlagboardConfig
from .leaderboard import LeaderboardAggregator
from .ledger import SubmissionLedger
from .scoring import ScoringEngine
from .store import DocumentStore
from .tcp_server import TCPServer
from .web_handlers import WebHandlers, error_middleware

logger = logging.getLogger(__name__)


class PortalSystem:
    """Async CTF portal with TCP and web interfaces."""

    def __init__(
        self,
        config: Optional[FlagboardConfig] = None,
        db_path: Optional[str] = None,
    ) -> None:
        self.config = config or FlagboardConfig()
        self.db_path = db_path or self.config.get("storage", "db_path")

        # Initialize components
        self.store = DocumentStore(
            self.db_path,
            busy_timeout=self.config.get("storage", "busy_timeout"),
        )
        self.catalog = ChallengeCatalog(self.store)
        self.ledger = SubmissionLedger(self.store)
        self.resolver = AttributionResolver(self.ledger)
        self.engine = ScoringEngine(
            self.store, self.catalog, self.ledger, self.resolver, self.config
        )
        self.leaderboard = LeaderboardAggregator(
            self.store, self.catalog, self.ledger, self.config
        )
        self.web_handlers = WebHandlers(
            self.catalog, self.ledger, self.engine, self.leaderboard, self.config
        )
        self.tcp_server = TCPServer(self.engine, self.config)

    async def init_db(self) -> None:
        """
        Initialize the database.

        Creates the document table and indexes if needed.
        """
        await self.store.init_db()

    def create_app(self) -> web.Application:
        """
        Build the aiohttp application with CORS on every route.

        @return: Configured application
        """
        app = web.Application(middlewares=[error_middleware])
        self.web_handlers.register_routes(app)

        cors = aiohttp_cors.setup(
            app,
            defaults={
                "*": aiohttp_cors.ResourceOptions(
                    allow_credentials=True,
                    expose_headers="*",
                    allow_headers="*",
                    allow_methods="*",
                )
            },
        )
        for route in list(app.router.routes()):
            cors.add(route)

        return app

    async def start_web_server(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
    ) -> web_runner.AppRunner:
        """
        Start the web server.

        @param host: Host address to bind (default uses configured host)
        @param port: Port number to use (default uses configured web_port)
        @return: AppRunner instance for the web server
        """
        host = host or self.config.get("server", "host")
        port = port or self.config.get("server", "web_port")

        app_runner = web_runner.AppRunner(self.create_app())
        await app_runner.setup()

        site = web_runner.TCPSite(app_runner, host, port)
        await site.start()

        logger.info("Web server running on http://%s:%s", host, port)
        return app_runner

    async def start_socket_server(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
    ):
        """
        Start the TCP socket server.

        @param host: Host address to bind (default uses configured host)
        @param port: Port number to use (default uses configured socket_port)
        @return: TCP server instance
        """
        host = host or self.config.get("server", "host")
        port = port or self.config.get("server", "socket_port")

        return await self.tcp_server.start_tcp_server(host, port)

    async def run_both_servers(self) -> None:
        """
        Run both TCP socket server and web server until interrupted.
        """
        socket_server = await self.start_socket_server()
        web_server_runner = await self.start_web_server()

        logger.info("%s running", self.config.get("portal_name"))

        try:
            async with socket_server:
                await socket_server.serve_forever()
        finally:
            socket_server.close()
            await socket_server.wait_closed()
            await web_server_runner.cleanup()
