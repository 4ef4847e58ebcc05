"""Decides what to do with a single discovered item.

The target tree is the resume checkpoint: an item counts as done when its
output file exists (and, in resume mode, decodes cleanly). Swapping in a
manifest-based strategy only requires another classifier.
"""

import logging
from pathlib import Path
from typing import Callable, Optional

from mlc.config.models import GeneralConfig
from mlc.domain.models import Action, WorkItem

logger = logging.getLogger(__name__)

ValidityProbe = Callable[[Path], bool]


class ItemStateClassifier:
    def __init__(self, validity_probe: Optional[ValidityProbe] = None):
        self.validity_probe = validity_probe

    def classify(self, item: WorkItem, config: GeneralConfig) -> Action:
        if config.dry_run:
            return Action.DRY_RUN_ONLY

        target = item.target_path
        if not target.exists():
            return Action.CONVERT

        # Existing output always wins outside resume mode
        if not config.resume:
            return Action.SKIP_EXISTS

        if self.validity_probe is None:
            raise RuntimeError("Resume mode requires a validity probe")

        if self.validity_probe(target):
            return Action.SKIP_EXISTS

        logger.info(f"CORRUPT_OUTPUT: {target}")
        return Action.RECONVERT_CORRUPT
