"""Global stage contract of the application root."""

from enum import Enum
from typing import Tuple


class AppStage(str, Enum):
    """Application stages, in execution order"""

    SETUP = "setup"
    PLATFORM_INIT = "platform.init"
    PLATFORM_REQUEST = "platform.request"
    PLATFORM_SESSION = "platform.session"
    PLATFORM_USER = "platform.user"
    PLATFORM_TYPE = "platform.type"
    INTERPRETATION_ASR = "interpretation.asr"
    INTERPRETATION_NLU = "interpretation.nlu"
    INTERPRETATION_INPUTS = "interpretation.inputs"
    DIALOGUE_ROUTER = "dialogue.router"
    DIALOGUE_HANDLER = "dialogue.handler"
    RESPONSE_OUTPUT = "response.output"
    RESPONSE_ASSEMBLE = "response.assemble"
    RESPONSE_FLUSH = "response.flush"
    FAIL = "fail"


# Stages dispatched once per request; SETUP runs once per process and FAIL
# only on errors.
REQUEST_SEQUENCE: Tuple[AppStage, ...] = tuple(
    stage for stage in AppStage if stage not in (AppStage.SETUP, AppStage.FAIL)
)


__all__ = ["AppStage", "REQUEST_SEQUENCE"]
