from otto.intent.entity_extractor import EntityExtractor
from otto.intent.matcher import Matcher

__all__ = ["Matcher", "EntityExtractor"]
