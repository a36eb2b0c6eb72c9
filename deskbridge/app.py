"""deskbridge - main application entry point."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from deskbridge.engine.config import BridgeConfig

logger = logging.getLogger(__name__)


def _configure_logging(level_name: str, log_file: Path | None) -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"
    )
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
    # slack_sdk logs every websocket frame at DEBUG.
    logging.getLogger("slack_sdk").setLevel(logging.INFO)


async def run_bridge(config: BridgeConfig) -> None:
    """Wire the components together and serve until cancelled."""
    from deskbridge.adapters.bridge_api import BridgeApiServer
    from deskbridge.adapters.slack_events import SlackEventHandler, create_socket_client
    from deskbridge.adapters.slack_platform import SlackPlatform
    from deskbridge.engine.orchestrator import ConversationOrchestrator
    from deskbridge.engine.prompt_manager import PromptManager
    from deskbridge.engine.providers.claude_provider import ClaudeCliProvider
    from deskbridge.engine.errors import ChannelConfigError
    from deskbridge.engine.session_registry import SessionRegistry
    from deskbridge.shared.services.channels import ChannelConfigStore
    from deskbridge.shared.services.desks import DeskRegistry
    from deskbridge.shared.services.manifests import ManifestStore

    platform = SlackPlatform(config.slack_bot_token)
    bot_user_id = await platform.auth_test()
    logger.info("Authenticated as bot user %s", bot_user_id)

    registry = SessionRegistry(config.sessions_path)
    desks = DeskRegistry(config.resolved_desks_dir)
    desks.reload()
    manifests = ManifestStore(config.resolved_manifests_dir)
    channels = ChannelConfigStore(config.resolved_channels_file)
    try:
        channels.reload()
    except ChannelConfigError as e:
        logger.error("%s; team mode disabled until the file is fixed", e)

    extra_env: dict[str, str] = {}
    if config.api_enabled:
        extra_env["BRIDGE_API_URL"] = f"http://{config.api_host}:{config.api_port}"
    provider = ClaudeCliProvider(
        config.claude_command,
        model=config.model,
        permission_mode=config.permission_mode,
        settings_path=config.claude_settings_path,
        default_cwd=config.default_cwd,
        extra_env=extra_env,
    )
    if not provider.is_available():
        logger.warning("'%s' not found on PATH; invocations will fail", provider.command)

    orchestrator = ConversationOrchestrator(
        platform,
        provider,
        registry,
        prompts=PromptManager(),
        desks=desks,
        manifests=manifests,
        channels=channels,
        config=config,
    )
    handler = SlackEventHandler(
        orchestrator,
        bot_user_id=bot_user_id,
        allowed_users=config.allowed_users,
        allowed_channels=config.allowed_channels,
    )

    api_server: BridgeApiServer | None = None
    if config.api_enabled:
        api_server = BridgeApiServer(
            platform,
            registry,
            host=config.api_host,
            port=config.api_port,
            secret=config.api_secret,
        )
        await api_server.start()

    background = [
        asyncio.create_task(orchestrator.run_sweeper(), name="session-sweeper"),
        asyncio.create_task(
            desks.watch(config.desk_reload_interval_seconds), name="desk-watcher",
        ),
    ]

    socket_client = create_socket_client(config.slack_app_token, platform.client, handler)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    try:
        await socket_client.connect()
        logger.info(
            "deskbridge running: %d desks, %d sessions, api=%s",
            len(desks), len(registry), "on" if api_server else "off",
        )
        await stop.wait()
    finally:
        logger.info("Shutting down")
        for task in background:
            task.cancel()
        await asyncio.gather(*background, return_exceptions=True)
        await orchestrator.close()
        await socket_client.close()
        if api_server is not None:
            await api_server.stop()


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(
        prog="deskbridge",
        description="deskbridge - Slack threads backed by Claude Code sessions",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--log-file", metavar="PATH",
        help="Also write logs to a rotating file",
    )
    parser.add_argument(
        "--check", action="store_true",
        help="Validate configuration, desk definitions and channel policies, then exit",
    )
    args = parser.parse_args()

    level = "DEBUG" if args.verbose else os.getenv("BRIDGE_LOG_LEVEL", "INFO")
    _configure_logging(level, Path(args.log_file).expanduser() if args.log_file else None)

    try:
        config = BridgeConfig.from_env()
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        sys.exit(2)

    missing = config.missing_credentials()
    if missing:
        logger.error("Missing required environment variables: %s", ", ".join(missing))
        sys.exit(1)

    if args.check:
        from deskbridge.engine.providers.claude_provider import ClaudeCliProvider
        from deskbridge.engine.errors import ChannelConfigError
        from deskbridge.shared.services.channels import ChannelConfigStore
        from deskbridge.shared.services.desks import DeskRegistry

        provider = ClaudeCliProvider(config.claude_command)
        desks = DeskRegistry(config.resolved_desks_dir)
        count = desks.reload()
        print(f"Configuration OK. {count} desk(s) loaded from {config.resolved_desks_dir}.")
        for desk in desks.all():
            mentions = ", ".join(desk.mentions) or "(default)"
            print(f"  {desk.slug}: {mentions}")
        channels = ChannelConfigStore(config.resolved_channels_file)
        try:
            channels.reload()
        except ChannelConfigError as e:
            print(e)
            sys.exit(1)
        for channel in channels.all():
            mode = "team mode" if channel.enabled else "off"
            enabled = ", ".join(c.name for c in channel.capabilities if c.enabled) or "(none)"
            print(f"  #{channel.channel_name} ({channel.channel_id}): {mode}; {enabled}")
        if not provider.is_available():
            print(f"'{provider.command}' CLI not found on PATH.")
            sys.exit(1)
        print(f"Claude CLI: {provider.command}")
        sys.exit(0)

    try:
        asyncio.run(run_bridge(config))
    except KeyboardInterrupt:
        print("\nInterrupted.")


if __name__ == "__main__":
    main()
