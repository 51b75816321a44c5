"""
Keyword NLU
===========

Pattern based intent matching for platforms that only deliver raw text.
Installed on a platform, it runs on the platform's "$nlu" stage and skips
turns whose intent was already resolved.

Usage:
    platform.use(KeywordNlu({
        "intents": {
            "NameIntent": [r"my name is (?P<name>\\w+)", r"call me (?P<name>\\w+)"],
            "HelpIntent": [r"\\bhelp\\b"],
        },
    }))

Named groups become inputs. Intents are tried in configuration order; the
first matching pattern wins.
"""

import re
from typing import Any, Dict, List, Optional, Pattern, Tuple

from turnflow_core.conversation.context import NluData, RequestContext
from turnflow_core.core.errors import ConfigurationError, InvalidParentError
from turnflow_core.core.plugin import Extensible, Plugin
from turnflow_core.platforms.base import Platform, PlatformStage


class KeywordNlu(Plugin):
    """Regex intent matcher on a platform's $nlu stage."""

    def __init__(self, config: Optional[Dict[str, Any]] = None, name: Optional[str] = None):
        super().__init__(config=config, name=name)
        self._patterns = self._compile(self.config["intents"])

    def default_config(self) -> Dict[str, Any]:
        return {
            "enabled": True,
            "intents": {},
            "case_sensitive": False,
        }

    def _compile(self, intents: Dict[str, List[str]]) -> List[Tuple[str, Pattern[str]]]:
        flags = 0 if self.config["case_sensitive"] else re.IGNORECASE
        compiled = []
        for intent, patterns in intents.items():
            if isinstance(patterns, str):
                patterns = [patterns]
            for pattern in patterns:
                try:
                    compiled.append((intent, re.compile(pattern, flags)))
                except re.error as e:
                    raise ConfigurationError(
                        f"Invalid pattern for intent {intent}: {e}",
                        details={"plugin": self.name, "pattern": pattern},
                    ) from e
        return compiled

    def install(self, parent: Extensible) -> None:
        if not isinstance(parent, Platform):
            raise InvalidParentError(self.name, Platform.__name__, type(parent).__name__)

        self.hook(parent, PlatformStage.NLU, self.interpret)

    def match(self, text: str) -> Optional[NluData]:
        for intent, pattern in self._patterns:
            found = pattern.search(text)
            if found:
                inputs = {key: value for key, value in found.groupdict().items() if value is not None}
                return NluData(intent=intent, inputs=inputs, confidence=1.0, source=self.name)
        return None

    async def interpret(self, context: RequestContext) -> None:
        if context.nlu.intent or not context.asr.text:
            return

        nlu = self.match(context.asr.text)
        if nlu is None:
            context.logger.debug("keyword_nlu_no_match", text=context.asr.text)
            return

        context.nlu = nlu
        context.logger.debug("keyword_nlu_matched", intent=nlu.intent, inputs=nlu.inputs)


__all__ = ["KeywordNlu"]
