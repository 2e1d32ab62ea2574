"""
LLM Vocab Study Plugin

A plugin for learning vocabulary with spaced repetition and LLM-generated example sentences.
"""

from . import db
from . import scheduler
from . import jobs
from . import linker
from . import generation
from . import runner
from . import plugin

__version__ = "0.1.0"
__all__ = ["db", "scheduler", "jobs", "linker", "generation", "runner", "plugin"]
