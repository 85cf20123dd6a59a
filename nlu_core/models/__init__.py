"""
Trainable intent classifier and text featurization
"""

from nlu_core.models.featurizer import extract_list_entities, featurize, tokenize
from nlu_core.models.intent_net import IntentNet, detect_device

__all__ = [
    "IntentNet",
    "detect_device",
    "extract_list_entities",
    "featurize",
    "tokenize",
]
