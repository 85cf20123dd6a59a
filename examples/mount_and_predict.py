#!/usr/bin/env python3
"""
Example: Mount a bot, train it and serve predictions

This example demonstrates:
- Loading bot definitions and configuration from YAML
- Mounting a bot (stored models load, missing ones train)
- Editing an intent and reacting to the dirty model
- Predicting with explicit and detected languages
"""
import asyncio
import logging
from pathlib import Path

from nlu_core.configs import NLUConfig
from nlu_core.core.application import create_application
from nlu_core.core.definitions import DefinitionsRepository
from nlu_core.core.schema import IntentDefinition

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

HERE = Path(__file__).parent


async def main():
    config = NLUConfig.from_yaml(HERE / "nlu_config.yaml")
    definitions = DefinitionsRepository()
    bot = definitions.load_file(HERE / "greeter_bot.yaml").to_bot_config()

    app = create_application(config, definitions)
    await app.initialize()
    try:
        logger.info("=== Mount ===")
        await app.mount_bot(bot)
        await app.training_queue.join()
        for session in await app.get_all_trainings():
            print(f"{session.language}: {session.status.value}")

        logger.info("=== Predict ===")
        predictor = app.get_bot(bot.id)
        for text in ["hello friend", "au revoir", "fly me to paname"]:
            prediction = await predictor.predict(text)
            top = prediction.top_intent()
            print(f"{text!r} [{prediction.detected_language}] -> {top.name} ({top.confidence:.2f})")

        logger.info("=== Edit and retrain ===")
        definitions.update_intent(
            bot.id,
            IntentDefinition(name="thanks", utterances={"en": ["thank you", "thanks a lot", "much appreciated"]}),
        )
        await definitions.channel_for(bot.id).drain()
        print(f"en after edit: {(await app.get_training(bot.id, 'en')).status.value}")

        await app.queue_training(bot.id, "en")
        await app.training_queue.join()
        prediction = await predictor.predict("thanks a lot", language="en")
        print(f"'thanks a lot' -> {prediction.top_intent().name}")
    finally:
        await app.teardown()


if __name__ == "__main__":
    asyncio.run(main())
