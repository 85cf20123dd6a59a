"""Mount a bot from a definitions file, train its languages and optionally predict."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
from pathlib import Path

from nlu_core.configs.nlu_config import NLUConfig
from nlu_core.core.application import create_application
from nlu_core.core.definitions import DefinitionsRepository

logger = logging.getLogger(__name__)


def _load_config(path: str | None) -> NLUConfig:
    if not path:
        return NLUConfig()
    if Path(path).suffix == ".json":
        return NLUConfig.from_json(path)
    return NLUConfig.from_yaml(path)


async def main_async(args: argparse.Namespace) -> int:
    cfg = _load_config(args.config)
    cfg = NLUConfig.from_env(base=cfg)
    if args.models_dir:
        cfg.storage.backend = "file"
        cfg.storage.models_dir = str(Path(args.models_dir).resolve())

    definitions = DefinitionsRepository()
    bot_definitions = definitions.load_file(args.definitions)
    bot_config = bot_definitions.to_bot_config()

    app = create_application(cfg, definitions)
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()

    def _handler(signum, frame):
        logger.warning("SIGTERM received, tearing down...")
        loop.call_soon_threadsafe(stop.set)

    previous_handler = signal.signal(signal.SIGTERM, _handler)

    await app.initialize()
    try:
        await app.mount_bot(bot_config)

        join_task = asyncio.create_task(app.training_queue.join())
        stop_task = asyncio.create_task(stop.wait())
        await asyncio.wait({join_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        for task in (join_task, stop_task):
            task.cancel()
        if stop.is_set():
            return 1

        for session in await app.get_all_trainings():
            print(f"{session.bot_id}/{session.language}: {session.status.value}"
                  + (f" ({session.error})" if session.error else ""))

        predictor = app.get_bot(bot_config.id)
        for text in args.predict or []:
            prediction = await predictor.predict(text, language=args.language)
            print(json.dumps({"text": text, **prediction.to_dict()}, indent=2, ensure_ascii=False))
    finally:
        await app.teardown()
        signal.signal(signal.SIGTERM, previous_handler)

    return 0


def main() -> int:
    ap = argparse.ArgumentParser(description="Train an NLU bot from a definitions file")
    ap.add_argument("--definitions", required=True, help="Path to bot definitions (YAML or JSON)")
    ap.add_argument("--config", default=None, help="Path to NLU YAML config")
    ap.add_argument("--models-dir", default=None, help="Persist models to this directory")
    ap.add_argument("--predict", action="append", default=None, help="Sentence to predict (repeatable)")
    ap.add_argument("--language", default=None, help="Prediction language (detected when omitted)")
    ap.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = ap.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s | %(levelname)s | %(message)s",
        datefmt="%H:%M:%S",
    )

    return asyncio.run(main_async(args))


if __name__ == "__main__":
    raise SystemExit(main())
