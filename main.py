# main.py

import logging
import os

from dotenv import load_dotenv

from config.logging_config import setup_logging
from config.settings import build_engine_config, inject_env_overrides
from core.aggregator import PriceAggregator
from core.bot_engine import ArbitrageBot
from core.evaluator import OpportunityEvaluator
from core.job_status import FileJobStatusStore
from core.ledger import CsvLedger
from core.notifier import LogNotifier
from core.price_reader import VenuePriceReader
from core.rebalancer import PositionRebalancer
from core.trade_executor import SlippageAdaptiveExecutor
from core.utils import ConfigError, load_config
from core.web3_client import Web3ChainClient


def load_wallet() -> tuple:
    """
    Reads the wallet from the .env file. Returns (account, address, private_key).
    """
    load_dotenv()
    address = os.getenv("WALLET_ADDRESS")
    private_key = os.getenv("PRIVATE_KEY")
    if not address or not private_key:
        raise ConfigError("CRITICAL ERROR: WALLET_ADDRESS and PRIVATE_KEY must be set in your .env file.")
    account = os.getenv("ACCOUNT_NAME") or address
    return account, address, private_key


def build_bot(engine_config, private_key: str) -> ArbitrageBot:
    """Wires the engine components around one web3 client."""
    client = Web3ChainClient(engine_config, private_key=private_key)
    ledger = CsvLedger("ledger")
    notifier = LogNotifier()

    reader = VenuePriceReader(client, engine_config.venues)
    aggregator = PriceAggregator(reader)
    evaluator = OpportunityEvaluator(engine_config)
    executor = SlippageAdaptiveExecutor(client, client, engine_config, ledger=ledger, evaluator=evaluator)
    rebalancer = PositionRebalancer(
        client, executor, engine_config, aggregator=aggregator, ledger=ledger, notifier=notifier
    )
    return ArbitrageBot(
        engine_config,
        aggregator,
        evaluator,
        executor,
        rebalancer,
        FileJobStatusStore("job_status.json"),
        ledger=ledger,
        notifier=notifier,
    )


def main():
    setup_logging()
    bot = None
    try:
        # 1. Load configuration and secrets
        config = inject_env_overrides(load_config())
        engine_config = build_engine_config(config)
        account, address, private_key = load_wallet()

        # 2. Initialize components and start the session
        bot = build_bot(engine_config, private_key)
        bot.init_arbitrage(account, address)

        # 3. Block until the session ends, stalls or is interrupted
        bot.wait()
        logging.info(f"Session finished: {bot.get_stats()}")

    except (ConfigError, ValueError) as e:
        logging.error(f"Configuration Error: {e}")
    except KeyboardInterrupt:
        logging.info("Shutdown signal received (Ctrl+C). Exiting gracefully.")
    except Exception as e:
        logging.error(f"An unexpected error occurred: {e}", exc_info=True)
    finally:
        if bot is not None and bot.is_running():
            bot.stop()


if __name__ == "__main__":
    main()
