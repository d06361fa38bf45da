"""Ordered post-processing of generated candidates.

Every stage takes ``(dat, parents_to_candidates)`` and returns a mapping of the
same shape. A stage raising ``PipelineHaltError`` stops the run for that DAT.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable, Optional, Protocol, Sequence

from romcurator.candidates.archive_file_hasher import CandidateArchiveFileHasher
from romcurator.candidates.combiner import CandidateCombiner
from romcurator.candidates.extension_corrector import CandidateExtensionCorrector
from romcurator.candidates.merge_split_validator import CandidateMergeSplitValidator
from romcurator.candidates.models import CandidateMap, count_candidates
from romcurator.candidates.patch_generator import CandidatePatchGenerator
from romcurator.candidates.post_processor import CandidatePostProcessor
from romcurator.candidates.validator import CandidateValidator
from romcurator.common.exceptions import PipelineHaltError
from romcurator.core.concurrency import MappableSemaphore
from romcurator.core.models import DAT
from romcurator.core.options import Options

if TYPE_CHECKING:
    from romcurator.files.patches import Patch

logger = logging.getLogger(__name__)


class CandidateStage(Protocol):
    name: str

    async def process(self, dat: DAT, parents_to_candidates: CandidateMap) -> CandidateMap:
        ...


class CandidatePipeline:
    def __init__(self, stages: Sequence[CandidateStage]):
        self.stages = list(stages)

    @classmethod
    def default(
        cls,
        options: Options,
        patches: Iterable["Patch"] = (),
        reader_semaphore: Optional[MappableSemaphore] = None,
    ) -> "CandidatePipeline":
        reader_semaphore = reader_semaphore or MappableSemaphore(options.reader_threads)
        return cls(
            [
                CandidatePatchGenerator(patches),
                CandidateExtensionCorrector(options, reader_semaphore),
                CandidateArchiveFileHasher(options, reader_semaphore),
                CandidatePostProcessor(options),
                CandidateValidator(options),
                CandidateMergeSplitValidator(options),
                CandidateCombiner(options),
            ]
        )

    @property
    def stage_names(self) -> list[str]:
        return [stage.name for stage in self.stages]

    async def run(self, dat: DAT, parents_to_candidates: CandidateMap) -> CandidateMap:
        """Run every stage in order; an empty mapping means the DAT was halted."""
        for stage in self.stages:
            logger.debug(
                "%s: running %s over %d candidate(s)",
                dat.name,
                stage.name,
                count_candidates(parents_to_candidates),
            )
            try:
                parents_to_candidates = await stage.process(dat, parents_to_candidates)
            except PipelineHaltError as e:
                logger.error("%s: %s", dat.name, e)
                return {}
        return parents_to_candidates
