"""Entry point: ``python -m applydispatch <user-id> [settings.yaml]``."""

from __future__ import annotations

import asyncio
import logging
import sys

from applydispatch.exceptions import ConfigurationError
from applydispatch.orchestrator import DispatchPipeline
from applydispatch.reporting.console import print_banner, print_batch_report
from applydispatch.settings import AppSettings


def _configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        datefmt="%H:%M:%S",
    )
    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


async def _async_main(user_id: str, settings_path: str | None) -> None:
    settings = AppSettings.from_yaml(settings_path)
    print_banner(user_id)
    async with DispatchPipeline.from_settings(settings) as pipeline:
        pipeline.provision_alias(user_id)
        await pipeline.inbox.process_pending()
        open_items = pipeline.inbox.action_items(user_id)
        if open_items:
            logging.info("%d recruiter repl(ies) await your action.", len(open_items))
        summary = await pipeline.run_for_user(user_id)
    print_batch_report(summary)


def main() -> None:
    if len(sys.argv) < 2:
        print("usage: python -m applydispatch <user-id> [settings.yaml]", file=sys.stderr)
        sys.exit(2)
    _configure_logging()
    try:
        asyncio.run(_async_main(sys.argv[1], sys.argv[2] if len(sys.argv) > 2 else None))
    except ConfigurationError as exc:
        logging.error("%s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        logging.info("Interrupted by user.")
        sys.exit(130)


if __name__ == "__main__":
    main()
