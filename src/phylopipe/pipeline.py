"""Resumable gene-family phylogeny pipeline.

Six ordered steps run between a resume step and an end step. With
auto-resume, a step whose outputs are already on disk is skipped until the
first step that actually runs; from there on every later step runs again.
"""

from __future__ import annotations

import logging
import shutil
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .config import MaskingFailurePolicy, PipelineConfig, RootingEngine
from .errors import IdentifierCodecError, MissingInputError, NotificationError, PipelineError
from .formats import rewrite_phyloxml_codes, write_nhx, write_rio_distance_matrix
from .idcodec import IdentifierDictionary, encode_fasta, encode_newick
from .io import count_sequences, is_non_empty
from .masking import (
    assess_alignment_quality,
    carry_alignment_forward,
    decode_masking_reports,
    run_masking,
)
from .notify import Notifier, SendmailNotifier
from .paths import ArtifactPaths
from .stage import ExpectedOutput, RunState, StageExecutor, StageResult, check_outputs
from .steps import Step, should_run
from .tools import (
    Runner,
    dorio_invocation,
    hmmbuild_invocation,
    mafft_invocation,
    phyloxml_converter_invocation,
    phyml_invocation,
    rap_invocation,
    retree_invocation,
    retree_script,
    run_checked,
    run_invocation,
    sdi_invocation,
    select_alignment_tier,
)

logger = logging.getLogger(__name__)

DIR_MODE = 0o2775
FILE_MODE = 0o664
MIN_RIO_BOOTSTRAPS = 5


@dataclass
class PipelineOutcome:
    family_id: str
    output_dir: Path
    status: str = "running"
    stages: list[StageResult] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    orthology_outputs: list[Path] = field(default_factory=list)
    error: str | None = None

    def record(self, result: StageResult) -> StageResult:
        self.stages.append(result)
        self.warnings.extend(result.warnings)
        return result

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)

    def stage(self, name: str) -> StageResult | None:
        for result in self.stages:
            if result.stage == name:
                return result
        return None

    def summary(self) -> str:
        lines = [f"Family {self.family_id}: {self.status} ({self.output_dir})"]
        for result in self.stages:
            lines.append(f"  {result.stage}: {result.status.value}")
        if self.warnings:
            lines.append(f"  warnings: {len(self.warnings)}")
        if self.error:
            lines.append(f"  error: {self.error}")
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "family_id": self.family_id,
            "output_dir": str(self.output_dir),
            "status": self.status,
            "stages": [r.to_dict() for r in self.stages],
            "warnings": list(self.warnings),
            "orthology_outputs": [str(p) for p in self.orthology_outputs],
            "error": self.error,
        }


class Pipeline:
    def __init__(
        self,
        config: PipelineConfig,
        *,
        runner: Runner = run_invocation,
        notifier: Notifier | None = None,
    ) -> None:
        self.config = config
        self.settings = config.settings
        self.runner = runner
        self.notifier = notifier if notifier is not None else SendmailNotifier(config.settings, runner)
        self.paths = ArtifactPaths(config.family_dir, config.family_id)
        self.state = RunState(auto_resume=config.auto_resume)
        self.executor = StageExecutor(self.state)
        self.dictionary: IdentifierDictionary | None = None
        self.sequence_count = 0

    def _should_run(self, step: Step) -> bool:
        return should_run(step, self.config.resume_step, self.config.end_step)

    @property
    def _bootstraps(self) -> int:
        return self.settings.bootstrap_count

    @property
    def _use_rap(self) -> bool:
        return self.config.rooting_engine is RootingEngine.RAP

    def run(self) -> PipelineOutcome:
        outcome = PipelineOutcome(self.config.family_id, self.paths.output_dir)
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="phylopipe-hmm")
        hmm_future: Future[StageResult] | None = None
        try:
            self._prepare()
            self._align(outcome)
            hmm_future = self._start_hmm(pool)
            self._mask(outcome)
            self._phylogeny(outcome)
            self._root(outcome)
            self._orthology(outcome)
            if hmm_future is not None:
                # The profile is not read by any later step, so joining last is safe.
                outcome.record(hmm_future.result())
            outcome.status = "completed"
        except Exception as exc:
            outcome.status = "failed"
            outcome.error = str(exc)
            logger.error("%s", exc)
            raise
        finally:
            pool.shutdown(wait=True)
            if outcome.status == "failed" and hmm_future is not None and hmm_future.done():
                hmm_error = hmm_future.exception()
                if hmm_error is not None:
                    outcome.warn(f"hmm: {hmm_error}")
            self._finalize(outcome)
        return outcome

    # preparation

    def _prepare(self) -> None:
        source = self.config.input_fasta
        if not source.is_file():
            raise MissingInputError("preparation", source)
        out_dir = self.paths.output_dir
        if not out_dir.exists():
            out_dir.mkdir(parents=True)
            out_dir.chmod(DIR_MODE)
        if self.config.clear_previous:
            logger.debug("Clear previous analyses in %s", out_dir)
            for entry in out_dir.iterdir():
                if entry.is_file() or entry.is_symlink():
                    entry.unlink()
        if source.resolve() != self.paths.source.resolve():
            shutil.copyfile(source, self.paths.source)
        logger.debug("File name seed: %s", self.paths.main)
        if self.state.auto_resume:
            logger.info("Auto-resume mode ON")
        logger.info("Start working on %s", self.paths.source)

        self.sequence_count = count_sequences(self.paths.source)
        try:
            _, self.dictionary = encode_fasta(self.paths.source, self.paths.dictionary, self.paths.encoded)
        except ValueError as exc:
            raise IdentifierCodecError(f"Failed to encode {self.paths.source}: {exc}") from exc

    # steps

    def _align(self, outcome: PipelineOutcome) -> None:
        p = self.paths
        if not self._should_run(Step.ALIGNMENT):
            logger.debug("Skip alignment")
            return
        tier = select_alignment_tier(self.sequence_count)
        logger.debug("Alignment tier for %d sequences: %s", self.sequence_count, tier.value)
        invocation = mafft_invocation(self.settings, tier, p.encoded, p.alignment, p.mafft_log)
        outcome.record(
            self.executor.execute(
                "alignment",
                [p.encoded],
                [p.alignment],
                lambda: run_checked(self.runner, invocation, "alignment", logs=[p.mafft_log]),
                logs=[p.mafft_log],
            )
        )

    def _start_hmm(self, pool: ThreadPoolExecutor) -> Future[StageResult] | None:
        p = self.paths
        if not self._should_run(Step.HMM):
            logger.debug("Skip HMM")
            return None
        invocation = hmmbuild_invocation(self.settings, p.alignment, p.hmm, p.hmm_log)
        return self.executor.submit(
            pool,
            "hmm",
            [p.alignment],
            [p.hmm],
            lambda: run_checked(self.runner, invocation, "hmm", logs=[p.hmm_log]),
            logs=[p.hmm_log],
        )

    def _mask(self, outcome: PipelineOutcome) -> None:
        p = self.paths
        if not self._should_run(Step.MASKING):
            logger.debug("Skip masking")
            return
        expected = [p.phylip, p.filtered_fasta, p.jalview]

        def _run() -> list[str]:
            warnings: list[str] = []
            for stale in p.masking_outputs():
                if stale.exists():
                    warnings.append(f"masking: existing output file will be replaced: {stale}")
                    logger.warning(warnings[-1])
                    stale.unlink()
            if self.config.skip_masking:
                logger.info("Masking disabled: the alignment is used as is")
                carry_alignment_forward(p.alignment, p)
            else:
                warnings += self._run_masking()
            # decoded copy for alignment viewers
            self._dictionary().decode_file(p.filtered_fasta, p.jalview)
            return warnings

        outcome.record(self.executor.execute("masking", [p.alignment], expected, _run, logs=[p.trimal_log]))

    def _run_masking(self) -> list[str]:
        p = self.paths
        try:
            warnings = run_masking(self.settings, p, p.alignment, self.runner)
        except (PipelineError, ValueError, OSError) as exc:
            if self.config.masking_failure_policy is not MaskingFailurePolicy.USE_ORIGINAL_ALIGNMENT:
                raise
            message = f"masking error ignored, the original alignment is used instead: {exc}"
            logger.warning(message)
            carry_alignment_forward(p.alignment, p)
            return [message]
        decode_masking_reports(p, self._dictionary())
        if self.config.check_alignment_quality:
            warnings += assess_alignment_quality(p.alignment, p.filtered_fasta, p.quality_log)
        return warnings

    def _phylogeny(self, outcome: PipelineOutcome) -> None:
        p = self.paths
        if not self._should_run(Step.PHYLOGENY):
            logger.debug("Skip phylogeny")
            return
        has_bootstraps = self._bootstraps > 0
        expected = [
            ExpectedOutput(p.phylogeny_tree),
            ExpectedOutput(p.bootstrap_trees, required=has_bootstraps),
            ExpectedOutput(p.distance_matrix, required=has_bootstraps and not self._use_rap),
            ExpectedOutput(p.decoded_tree),
        ]
        logs = [p.phyml_log, p.phyml_error_log]

        def _run() -> None:
            run_checked(self.runner, phyml_invocation(self.settings, p.phylip, *logs), "phylogeny", logs=logs)
            check_outputs("phylogeny", [ExpectedOutput(p.phyml_raw_tree)], logs=logs)
            if self.config.midpoint_rooting:
                self._midpoint_root()
            else:
                p.phyml_raw_tree.replace(p.phylogeny_tree)
            self._dictionary().decode_file(p.phylogeny_tree, p.decoded_tree)

        outcome.record(self.executor.execute("phylogeny", [p.phylip], expected, _run, logs=logs))

    def _midpoint_root(self) -> None:
        p = self.paths
        for stale in (p.retree_script, p.retree_outtree):
            if stale.exists():
                stale.unlink()
        p.retree_script.write_text(retree_script(p.phyml_raw_tree.name), encoding="utf-8")
        logger.debug("Midpoint-rooting %s with retree", p.phyml_raw_tree)
        invocation = retree_invocation(self.settings, p.retree_script, p.output_dir, p.retree_log)
        run_checked(self.runner, invocation, "phylogeny", logs=[p.retree_log])
        check_outputs("phylogeny", [ExpectedOutput(p.retree_outtree)], logs=[p.retree_log])
        p.retree_outtree.replace(p.phylogeny_tree)

    def _root(self, outcome: PipelineOutcome) -> None:
        if not self._should_run(Step.ROOTING):
            logger.debug("Skip rooting")
            return
        if self._use_rap:
            outcome.record(self._root_with_rap())
        else:
            outcome.record(self._root_with_sdi())

    def _root_with_rap(self) -> StageResult:
        p = self.paths
        logs = [p.rap_log, p.rap_error_log]
        expected = [
            ExpectedOutput(p.rap_output("gene_tree")),
            ExpectedOutput(p.rap_output("reconciled_tree")),
            ExpectedOutput(p.rap_output("stats"), required=False),
            ExpectedOutput(p.rap_output("phyloxml"), required=False),
        ]

        def _run() -> None:
            self.settings.require_species_tree()
            _, rap_dictionary = encode_newick(
                p.decoded_tree, p.rap_dictionary, p.rap_input_tree, keep_species_code=True
            )
            encoded = {kind: p.rap_output(kind, encoded=True) for kind in p.rap_kinds}
            for path in encoded.values():
                if path.exists():
                    path.unlink()
            invocation = rap_invocation(self.settings, p.rap_input_tree, encoded, *logs)
            run_checked(self.runner, invocation, "rooting", logs=logs)
            check_outputs(
                "rooting",
                [ExpectedOutput(encoded["gene_tree"]), ExpectedOutput(encoded["reconciled_tree"])],
                logs=logs,
            )
            for kind, path in encoded.items():
                if is_non_empty(path):
                    rap_dictionary.decode_file(path, p.rap_output(kind))

        return self.executor.execute("rooting", [p.decoded_tree], expected, _run, logs=logs)

    def _root_with_sdi(self) -> StageResult:
        p = self.paths
        logs = [p.phyloxml_log, p.sdi_log, p.sdi_error_log]
        has_bootstraps = self._bootstraps > 0
        inputs = [p.decoded_tree] + ([p.bootstrap_trees] if has_bootstraps else [])
        expected = [ExpectedOutput(p.sdi_rooted(False))]
        if has_bootstraps:
            expected.append(ExpectedOutput(p.sdi_rooted(True)))

        def _run() -> None:
            self.settings.require_species_tree()
            self._run_sdi(p.decoded_tree, bootstrap=False)
            if has_bootstraps:
                self._dictionary().decode_file(p.bootstrap_trees, p.decoded_bootstrap_trees)
                self._run_sdi(p.decoded_bootstrap_trees, bootstrap=True)

        return self.executor.execute("rooting", inputs, expected, _run, logs=logs)

    def _run_sdi(self, newick: Path, *, bootstrap: bool) -> Path:
        p = self.paths
        nhx = p.sdi_nhx(bootstrap)
        phyloxml = p.sdi_phyloxml(bootstrap)
        rooted = p.sdi_rooted(bootstrap)
        for stale in (nhx, phyloxml, rooted):
            if stale.exists():
                stale.unlink()
        write_nhx(newick, nhx)
        converter = phyloxml_converter_invocation(self.settings, nhx, phyloxml, p.phyloxml_log)
        run_checked(self.runner, converter, "rooting", logs=[p.phyloxml_log])
        check_outputs("rooting", [ExpectedOutput(phyloxml)], logs=[p.phyloxml_log])
        rewrite_phyloxml_codes(phyloxml)
        # A midpoint-rooted tree keeps its root; otherwise minimise duplications.
        invocation = sdi_invocation(
            self.settings,
            phyloxml,
            rooted,
            p.output_dir,
            p.sdi_log,
            p.sdi_error_log,
            minimize_duplications=not self.config.midpoint_rooting,
        )
        run_checked(self.runner, invocation, "rooting", logs=[p.sdi_log, p.sdi_error_log])
        check_outputs("rooting", [ExpectedOutput(rooted)], logs=[p.sdi_log, p.sdi_error_log])
        return rooted

    def _orthology(self, outcome: PipelineOutcome) -> None:
        p = self.paths
        if self._use_rap:
            logger.debug("Rooting with RAP: skip RIO")
            return
        if self._bootstraps < MIN_RIO_BOOTSTRAPS:
            outcome.warn(f"not enough bootstraps ({self._bootstraps}): skipping RIO step")
            return
        if not self._should_run(Step.ORTHOLOGY):
            logger.debug("Skip orthology")
            return
        logs = [p.rio_log, p.rio_error_log]
        rooted_tree = p.sdi_rooted(False)
        rooted_trees = p.sdi_rooted(True)
        inputs = [p.dictionary, rooted_tree, rooted_trees, p.distance_matrix]
        expected = [ExpectedOutput(p.decoded_distance_matrix), ExpectedOutput(p.rio_distance_matrix)]

        def _run() -> list[str]:
            dictionary = self._dictionary()
            dictionary.decode_file(p.distance_matrix, p.decoded_distance_matrix)
            write_rio_distance_matrix(p.decoded_distance_matrix, p.rio_distance_matrix)
            for log in logs:
                if log.exists():
                    log.unlink()
            queries = dictionary.queries()
            logger.debug("Found %d query sequences", len(queries))
            warnings: list[str] = []
            for query in queries:
                output = p.rio_output(query)
                if output.exists():
                    warnings.append(f"orthology: existing output file will be replaced: {output}")
                    output.unlink()
                invocation = dorio_invocation(
                    self.settings,
                    bootstrap_trees=rooted_trees,
                    query=query,
                    output=output,
                    rooted_tree=rooted_tree,
                    distance_matrix=p.rio_distance_matrix,
                    log=p.rio_log,
                    error_log=p.rio_error_log,
                )
                try:
                    run_checked(self.runner, invocation, "orthology", logs=logs)
                except PipelineError as exc:
                    warnings.append(f"orthology: {query}: {exc}")
                    continue
                if is_non_empty(output):
                    outcome.orthology_outputs.append(output)
                else:
                    warnings.append(f"failed to infer orthologs for {query}: file '{output}' is missing or empty")
            for message in warnings:
                logger.warning(message)
            return warnings

        outcome.record(
            self.executor.execute("orthology", inputs, expected, _run, logs=logs, resumable=False)
        )

    # helpers

    def _dictionary(self) -> IdentifierDictionary:
        if self.dictionary is None:
            self.dictionary = IdentifierDictionary.load(self.paths.dictionary)
        return self.dictionary

    def _finalize(self, outcome: PipelineOutcome) -> None:
        out_dir = self.paths.output_dir
        if out_dir.is_dir():
            for entry in out_dir.iterdir():
                if entry.is_file():
                    try:
                        entry.chmod(FILE_MODE)
                    except OSError as exc:
                        logger.warning("Failed to set permissions on %s: %s", entry, exc)
        if self.config.email:
            try:
                self.notifier.send(
                    self.config.email,
                    f"[phylopipe] Pipeline {self.config.family_id}: {outcome.status}",
                    outcome.summary(),
                )
            except NotificationError as exc:
                outcome.warn(f"notification not sent: {exc}")


def run_pipeline(config: PipelineConfig, *, runner: Runner = run_invocation) -> PipelineOutcome:
    return Pipeline(config, runner=runner).run()
