#!/usr/bin/env python3
"""
GrammarMaster - Main Entry Point

Runs the Discord quiz bot (default) or the HTTP API.

Usage:
    python main.py          # Discord bot
    python main.py api      # HTTP API served by uvicorn
    python main.py token 42 # print an API bearer token for user 42

Configuration:
    1. Copy config.json and set your Discord bot token
    2. Or set DISCORD_BOT_TOKEN environment variable
    3. Set JWT_SECRET before exposing the API

Environment Variables:
    DISCORD_BOT_TOKEN: Your Discord bot token (overrides config.json)
    JWT_SECRET: Secret used to verify API bearer tokens (overrides config.json)
"""

import argparse
import asyncio
import sys
import os
import json
import logging
from pathlib import Path

logger = logging.getLogger("grammarmaster")


def load_config(config_path="config.json"):
    """Load configuration from config.json file."""
    config_path = Path(config_path)

    if not config_path.exists():
        print(f"❌ Error: {config_path} not found!")
        print("Please copy config.json and configure your Discord bot token.")
        sys.exit(1)

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        print(f"❌ Error: Invalid JSON in {config_path}: {e}")
        sys.exit(1)
    except OSError as e:
        print(f"❌ Error loading {config_path}: {e}")
        sys.exit(1)


def get_bot_token(config):
    """Get bot token from environment variable or config file."""
    token = os.getenv('DISCORD_BOT_TOKEN')
    if token:
        return token

    token = config.get('bot', {}).get('token')
    if not token or token == "YOUR_DISCORD_BOT_TOKEN_HERE":
        print("❌ Error: Discord bot token not configured!")
        print("Either:")
        print("  1. Set DISCORD_BOT_TOKEN environment variable")
        print("  2. Update the 'token' field in config.json")
        sys.exit(1)

    return token


def setup_logging_from_config(config):
    """Set up console, file and error-only logging based on configuration."""
    log_config = config.get('logging', {})
    log_level = getattr(logging, log_config.get('level', 'INFO').upper(), logging.INFO)
    log_directory = Path(log_config.get('log_directory', './logs/'))
    log_directory.mkdir(parents=True, exist_ok=True)

    log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    logging.basicConfig(
        level=log_level,
        format=log_format,
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(log_directory / "grammarmaster.log", encoding='utf-8')
        ]
    )

    error_handler = logging.FileHandler(log_directory / "errors.log", encoding='utf-8')
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(logging.Formatter(log_format))
    logging.getLogger().addHandler(error_handler)

    # Reduce discord.py noise
    logging.getLogger('discord').setLevel(logging.WARNING)
    logging.getLogger('discord.http').setLevel(logging.WARNING)


async def run_bot_with_config(config):
    """Run the Discord bot with configuration."""
    from grammarmaster.bot import run_bot
    await run_bot(get_bot_token(config), config)


def run_api_with_config(config):
    """Load the catalog and serve the HTTP API."""
    import uvicorn

    from grammarmaster.api import create_app
    from grammarmaster.config_manager import ConfigManager
    from grammarmaster.data_manager import DataManager
    from grammarmaster.result_recorder import ResultRecorder
    from grammarmaster.storage import create_repository

    config_manager = ConfigManager()
    config_manager.apply_config(config)
    for warning in config_manager.get_configuration_health_check()['warnings']:
        logger.warning(warning)

    data_manager = DataManager(config_manager.get_quiz_directory())
    data_manager.load_quiz_files()
    recorder = ResultRecorder(create_repository(config_manager.get_results_file()))

    app = create_app(data_manager, recorder, config_manager)
    uvicorn.run(app, host=config_manager.get_api_host(), port=config_manager.get_api_port())


def issue_token_with_config(config, user_id):
    """Sign an API bearer token for a user with the configured secret and expiry."""
    from grammarmaster.auth import create_access_token
    from grammarmaster.config_manager import ConfigManager

    config_manager = ConfigManager()
    config_manager.apply_config(config)
    for warning in config_manager.get_configuration_health_check()['warnings']:
        logger.warning(warning)

    return create_access_token(
        user_id,
        config_manager.get_jwt_secret(),
        config_manager.get_jwt_algorithm(),
        config_manager.get_token_expire_days()
    )


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="GrammarMaster quiz engine")
    parser.add_argument('mode', nargs='?', choices=['bot', 'api', 'token'], default='bot',
                        help="run the Discord bot (default), the HTTP API, or print an API token")
    parser.add_argument('user_id', nargs='?', help="user id to issue a token for (token mode)")
    parser.add_argument('--config', default='config.json', help="path to the configuration file")
    args = parser.parse_args(argv)
    if args.mode == 'token' and not args.user_id:
        parser.error("token mode requires a user id")
    return args


if __name__ == "__main__":
    args = parse_args()
    config = load_config(args.config)
    setup_logging_from_config(config)

    try:
        if args.mode == 'token':
            print(issue_token_with_config(config, args.user_id))
        elif args.mode == 'api':
            print("🌐 Starting GrammarMaster API...")
            run_api_with_config(config)
        else:
            print("🤖 Starting GrammarMaster Discord bot...")
            asyncio.run(run_bot_with_config(config))
    except KeyboardInterrupt:
        print("\n👋 GrammarMaster stopped by user")
