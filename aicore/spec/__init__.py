from . import base, prompt, stream
from .base import *
from .prompt import *
from .stream import *

__all__ = [*base.__all__, *prompt.__all__, *stream.__all__]
