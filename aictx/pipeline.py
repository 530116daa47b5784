"""
Correlation of one assistant response with the code it produced.

For each response:

1. candidate files = files changed in the window after the response
2. line ranges from the working-tree diff, restricted to the candidates
3. if nothing matched, the unrestricted diff
4. if still nothing but there were candidates, a {1,1} marker per candidate
5. best-effort commit of those files on the provenance branch
6. upsert of the provenance record (and the commit-keyed document)

Failures in 2-5 degrade the outcome; only an empty result skips the
response entirely.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path

from .config import TrackerConfig
from .errors import AictxError, DiffParseError, RepositoryError
from .git.commit import CommitOrchestrator
from .git.diff import DiffResolver, ranges_to_file_changes
from .models import (
    NO_PROMPT,
    NO_RESPONSE,
    AIResponse,
    ChatRole,
    CommitContext,
    FileChange,
    LineRange,
    ProvenanceRecord,
    normalize_timestamp_ms,
    now_ms,
)
from .paths import is_excluded
from .source import ChatSource
from .store import CommitContextStore, ProvenanceStore
from .tracker import ChangeTracker

logger = logging.getLogger(__name__)

# "file touched, exact lines unknown"
UNKNOWN_LINES = LineRange(1, 1)


@dataclass(frozen=True)
class PipelineOutcome:
    """What one pipeline run did."""

    persisted: bool
    record: ProvenanceRecord | None = None
    candidates: tuple[str, ...] = ()
    degraded: bool = False
    commit_hash: str | None = None


def resolve_prompt(messages: Iterable[AIResponse], response_time_ms: int) -> str:
    """Text of the latest user message at or before ``response_time_ms``."""
    latest: AIResponse | None = None
    latest_time = -1
    for message in messages:
        if message.role != ChatRole.USER:
            continue
        t = normalize_timestamp_ms(message.timestamp)
        if t <= response_time_ms and t >= latest_time:
            latest, latest_time = message, t
    if latest is None or not latest.text.strip():
        return NO_PROMPT
    return latest.text


class CorrelationPipeline:
    """Turn a detected response into a persisted provenance record."""

    def __init__(
        self,
        workspace_root: Path,
        *,
        source: ChatSource,
        tracker: ChangeTracker,
        diff_resolver: DiffResolver | None = None,
        orchestrator: CommitOrchestrator | None = None,
        store: ProvenanceStore | None = None,
        commit_store: CommitContextStore | None = None,
        config: TrackerConfig | None = None,
        on_branch_created: Callable[[str], None] | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.workspace_root = Path(workspace_root)
        self.config = config or TrackerConfig()
        self.source = source
        self.tracker = tracker
        self.diff_resolver = diff_resolver or DiffResolver(
            store_dir_name=self.config.store_dir_name,
            timeout=self.config.git_timeout_s,
        )
        self.orchestrator = orchestrator or CommitOrchestrator(
            branch_prefix=self.config.branch_prefix,
            store_dir_name=self.config.store_dir_name,
            timeout=self.config.git_timeout_s,
        )
        self.store = store or ProvenanceStore(self.workspace_root, self.config.store_dir_name)
        self.commit_store = commit_store or CommitContextStore(self.workspace_root, self.config.store_dir_name)
        self.on_branch_created = on_branch_created
        self._clock = clock
        # One run at a time per workspace; the store has no locking of its own
        self._run_lock = threading.Lock()

    def run(self, response: AIResponse) -> bool:
        """
        Process ``response``.

        Returns:
            True once a record was persisted, False if no files were found
        """
        return self.process(response).persisted

    def process(self, response: AIResponse) -> PipelineOutcome:
        with self._run_lock:
            return self._process(response)

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def _process(self, response: AIResponse) -> PipelineOutcome:
        response_time = normalize_timestamp_ms(response.timestamp)
        candidates = tuple(sorted(self.tracker.files_in_window(response_time, self.config.after_window_ms)))
        logger.debug("Response %s: %d candidate file(s) %s", response.id, len(candidates), list(candidates[:5]))

        ranges: dict[str, list[LineRange]] = {}
        if candidates:
            ranges = self._diff_ranges(candidates)
        if not ranges:
            ranges = self._diff_ranges(None)

        degraded = False
        if not ranges and candidates:
            ranges = {
                path: [UNKNOWN_LINES]
                for path in candidates
                if not is_excluded(path, self.config.ignored_segments)
            }
            degraded = bool(ranges)
            if degraded:
                logger.warning(
                    "No diff for %d changed file(s); recording them without exact lines",
                    len(ranges),
                )

        if not ranges:
            logger.info("No changed files for response %s, skipping", response.id)
            return PipelineOutcome(persisted=False, candidates=candidates)

        files = ranges_to_file_changes(ranges)
        commit_hash = self._commit(files)
        prompt, thinking = self._texts(response, response_time)

        record = ProvenanceRecord(
            response_id=response.id,
            conversation_id=response.conversation_id,
            prompt=prompt,
            thinking=thinking,
            files=tuple(files),
            commit_hash=commit_hash,
            created_at=self._clock(),
        )
        stored = self.store.upsert(record)

        if commit_hash:
            self._save_commit_context(response, response_time, files, prompt, thinking, commit_hash)

        return PipelineOutcome(
            persisted=True,
            record=stored,
            candidates=candidates,
            degraded=degraded,
            commit_hash=commit_hash,
        )

    def _diff_ranges(self, candidates: Sequence[str] | None) -> dict[str, list[LineRange]]:
        try:
            return self.diff_resolver.diff_line_ranges(self.workspace_root, candidate_paths=candidates)
        except DiffParseError as e:
            logger.warning("Diff failed, treating as no changes: %s", e)
            return {}

    def _commit(self, files: list[FileChange]) -> str | None:
        try:
            context, commit_hash = self.orchestrator.commit_on_provenance_branch(
                self.workspace_root,
                [f.file_path for f in files],
            )
        except (RepositoryError, OSError) as e:
            logger.warning("Commit step failed, storing record without commit: %s", e)
            return None

        if commit_hash is None:
            logger.info("Nothing to commit; storing record without commit")
        elif context.created and self.on_branch_created is not None:
            try:
                self.on_branch_created(context.branch_name)
            except Exception as e:
                logger.warning("Branch-created callback failed for %s: %s", context.branch_name, e)
        return commit_hash

    def _texts(self, response: AIResponse, response_time: int) -> tuple[str, str]:
        try:
            messages = self.source.messages(response.conversation_id)
        except (AictxError, OSError) as e:
            logger.warning("Could not load conversation %s: %s", response.conversation_id, e)
            messages = []

        # The stored copy may have grown since detection (streamed answers)
        text = response.text
        for message in messages:
            if message.id == response.id and len(message.text) > len(text):
                text = message.text

        prompt = resolve_prompt(messages, response_time)
        thinking = text if text.strip() else NO_RESPONSE
        return prompt, thinking

    def _save_commit_context(
        self,
        response: AIResponse,
        response_time: int,
        files: list[FileChange],
        prompt: str,
        thinking: str,
        commit_hash: str,
    ) -> None:
        context = CommitContext(
            commit_hash=commit_hash,
            timestamp=self._clock(),
            changes=tuple(files),
            prompt=prompt,
            thinking=thinking,
            ai_refs=(
                {
                    "composerId": response.conversation_id,
                    "bubbleIds": [response.id],
                    "time": response_time,
                },
            ),
        )
        try:
            self.commit_store.save(context)
        except OSError as e:
            logger.warning("Could not write commit context %s: %s", commit_hash[:7], e)
