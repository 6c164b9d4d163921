"""
Ingestion pipeline.

Wires the components together in the order an input goes through them:

    preprocess -> route -> classify (or split into topics)
      -> optional completion check / thread suggestion
      -> persist note, tasks and entities
      -> embedding + relation edges and notebook context, in the background

Analysis and saving are separate calls: the UI shows the analysis, lets the
user correct it, and only then asks to save. Post-processing runs after the
save has committed and never fails the save.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from datetime import date
from typing import List, Optional, Set

from bitacora.config import Config

from .book_context import BookContextService
from .embeddings import EmbeddingsService
from .entry_classifier import EntryClassifier
from .entry_matching import EntryMatcher
from .models import (
    AnalysisResult,
    Attachment,
    Book,
    Entry,
    MatchResult,
    MultiTopicAnalysis,
    PipelineContext,
    SimilarEntry,
    Thread,
    ThreadRelationResult,
)
from .multi_topic import MultiTopicSplitter
from .preprocessing import clean_text, preprocess
from .router import AnalysisStep, StepRouter
from .storage import BitacoraStorage, NotFoundError
from .text_signals import match_task
from .thread_relation import ThreadRelationDetector

logger = logging.getLogger(__name__)

CONTEXT_ENTRY_LIMIT = 100
RELATED_PREVIEW_LIMIT = 5


class BitacoraPipeline:
    def __init__(
        self,
        storage: BitacoraStorage,
        router: StepRouter,
        classifier: EntryClassifier,
        splitter: MultiTopicSplitter,
        matcher: EntryMatcher,
        thread_detector: ThreadRelationDetector,
        embeddings: EmbeddingsService,
        book_context: BookContextService,
        executor: Optional[Executor] = None,
        run_in_background: bool = True,
    ):
        self.storage = storage
        self.router = router
        self.classifier = classifier
        self.splitter = splitter
        self.matcher = matcher
        self.thread_detector = thread_detector
        self.embeddings = embeddings
        self.book_context = book_context
        self.run_in_background = run_in_background
        self._executor = executor
        self._owns_executor = executor is None
        self._executor_lock = threading.Lock()

    # ========================================================================
    # ANALYSIS
    # ========================================================================

    def build_context(self, user_id: str) -> PipelineContext:
        """Load what the components need to know about a user."""
        return PipelineContext(
            user_id=user_id,
            books=self.storage.list_books(user_id),
            entries=self.storage.list_entries(user_id, limit=CONTEXT_ENTRY_LIMIT),
            pending_tasks=self.storage.list_pending_tasks(user_id),
            threads=self.storage.list_threads(user_id),
        )

    def ingest(
        self,
        text: str,
        attachment: Optional[Attachment],
        context: PipelineContext,
        target_book_id: Optional[str] = None,
        today: Optional[date] = None,
    ) -> AnalysisResult:
        """
        Analyze one input as a single note.

        Raises:
            ValueError: If there is nothing to analyze
            NotFoundError: If `target_book_id` is not one of the user's notebooks
            RateLimitError: If the provider stays rate limited after retries
        """
        pre = preprocess(text)
        steps = self.router.route(pre.cleaned, pre.length, attachment is not None)

        target_book: Optional[Book] = None
        if target_book_id:
            target_book = context.book_by_id(target_book_id)
            if target_book is None:
                raise NotFoundError(f"Book {target_book_id} not found")

        classifier_attachment = attachment if AnalysisStep.EXTRACT in steps else None
        result = self.classifier.classify(pre.cleaned, context.books, attachment=classifier_attachment, today=today)

        if target_book is not None:
            result.target_book_name = target_book.name

        existing = context.find_book(result.target_book_name)
        result.is_new_book = existing is None
        result.target_book_id = existing.id if existing else None
        if existing:
            result.target_book_name = existing.name

        result.steps = [s.value for s in steps]
        result.length = pre.length

        if AnalysisStep.ANALYZE in steps:
            result.related_entries = self._preview_related(pre.cleaned, context.user_id)

        logger.debug(
            "Ingested %s note -> %r (%s, new_book=%s)",
            pre.length,
            result.target_book_name,
            result.type.value,
            result.is_new_book,
        )
        return result

    def ingest_multi_topic(
        self,
        text: str,
        attachment: Optional[Attachment],
        context: PipelineContext,
        today: Optional[date] = None,
    ) -> MultiTopicAnalysis:
        """
        Analyze one input that may cover several notebooks.

        Raises:
            ValueError: If there is nothing to analyze
            RateLimitError: If the provider stays rate limited after retries
        """
        pre = preprocess(text)
        return self.splitter.split(pre.cleaned, context.books, context.pending_tasks, attachment=attachment, today=today)

    def check_completion(self, text: str, context: PipelineContext) -> MatchResult:
        return self.matcher.find_match(clean_text(text), context.entries, context.pending_tasks)

    def suggest_thread(
        self,
        text: str,
        context: PipelineContext,
        book_id: Optional[str] = None,
    ) -> ThreadRelationResult:
        return self.thread_detector.detect(clean_text(text), context.entries, context.threads, book_id=book_id)

    def _preview_related(self, text: str, user_id: str) -> List[SimilarEntry]:
        try:
            vector = self.embeddings.embed(text)
            return self.embeddings.find_similar(vector, user_id, limit=RELATED_PREVIEW_LIMIT)
        except Exception as e:
            logger.warning("Related-notes preview skipped: %s", e)
            return []

    # ========================================================================
    # SAVING
    # ========================================================================

    def save_entry(
        self,
        user_id: str,
        analysis: AnalysisResult,
        original_text: str,
        *,
        thread_id: Optional[str] = None,
        completion: Optional[MatchResult] = None,
    ) -> Entry:
        """
        Persist a confirmed single-topic analysis.

        Nothing is written until the notebook and thread are known to be valid.
        A note saved into a thread goes to the thread's notebook, and an accepted
        completion is applied only once the note exists.

        Raises:
            ValueError: If the notebook name is empty
            NotFoundError: If the notebook or thread does not belong to the user
        """
        if thread_id:
            thread = self.storage.get_thread(user_id, thread_id)
            if thread is None:
                raise NotFoundError(f"Thread {thread_id} not found")
            book_id = thread.book_id
        else:
            book_id = self._resolve_book(user_id, analysis).id

        entry = self.storage.create_entry(
            user_id,
            book_id,
            original_text,
            note_type=analysis.type,
            summary=analysis.summary,
            tasks=analysis.tasks,
            entities=analysis.entities,
            thread_id=thread_id,
        )

        if completion is not None and completion.should_update and completion.task_to_update:
            if self.storage.complete_task(user_id, completion.task_to_update, completion.completion_notes):
                logger.info("Task %s completed from entry %s", completion.task_to_update, entry.id)

        self.schedule_post_process(entry.id, entry, user_id)
        self.schedule_book_context(user_id, entry.book_id, entry.summary)
        return entry

    def save_topics(self, user_id: str, analysis: MultiTopicAnalysis) -> List[Entry]:
        """
        Persist every topic as its own note and apply the topics' task actions.

        Each pending task is completed at most once, whichever topic names it first.
        """
        pending = self.storage.list_pending_tasks(user_id)
        completed: Set[str] = set()
        saved: List[Entry] = []

        for topic in analysis.topics:
            book, _ = self.storage.get_or_create_book(user_id, topic.target_book_name or Config.DEFAULT_BOOK_NAME)
            entry = self.storage.create_entry(
                user_id,
                book.id,
                topic.content or topic.summary,
                note_type=topic.type,
                summary=topic.summary,
                tasks=topic.tasks,
                entities=topic.entities,
            )
            saved.append(entry)

            for action in topic.task_actions:
                candidates = [t for t in pending if t.id not in completed]
                task = match_task(action.task_description, candidates)
                if task is None:
                    logger.debug("No pending task matches %r", action.task_description)
                    continue
                if self.storage.complete_task(user_id, task.id, action.completion_notes):
                    completed.add(task.id)

        for entry in saved:
            self.schedule_post_process(entry.id, entry, user_id)
            self.schedule_book_context(user_id, entry.book_id, entry.summary)

        logger.info("Saved %d topics for user %s, %d tasks completed", len(saved), user_id, len(completed))
        return saved

    def assign_thread(self, user_id: str, entry_id: str, thread_id: Optional[str]) -> Entry:
        """
        Raises:
            NotFoundError: If the note or thread does not belong to the user
        """
        entry = self.storage.set_entry_thread(user_id, entry_id, thread_id)
        if entry is None:
            raise NotFoundError(f"Entry {entry_id} not found")
        return entry

    def update_entry(
        self,
        user_id: str,
        entry_id: str,
        *,
        summary: Optional[str] = None,
        rewritten_text: Optional[str] = None,
    ) -> Entry:
        """
        Edit a saved note's summary or rewritten text. A changed summary is
        re-embedded and re-linked in the background.

        Raises:
            NotFoundError: If the note does not belong to the user
        """
        if not self.storage.update_entry(user_id, entry_id, summary=summary, rewritten_text=rewritten_text):
            raise NotFoundError(f"Entry {entry_id} not found")
        entry = self.storage.get_entry(user_id, entry_id)
        if summary is not None:
            self.schedule_post_process(entry.id, entry, user_id)
        return entry

    def create_thread(self, user_id: str, title: str, book_id: str) -> Thread:
        return self.storage.create_thread(user_id, title, book_id)

    def _resolve_book(self, user_id: str, analysis: AnalysisResult) -> Book:
        if analysis.target_book_id:
            book = self.storage.get_book(user_id, analysis.target_book_id)
            if book is None:
                raise NotFoundError(f"Book {analysis.target_book_id} not found")
            return book
        book, created = self.storage.get_or_create_book(user_id, analysis.target_book_name)
        if created:
            logger.info("Created book %r for user %s", book.name, user_id)
        return book

    # ========================================================================
    # POST-PROCESSING
    # ========================================================================

    def post_process(
        self,
        entry_id: str,
        entry: Optional[Entry],
        user_id: str,
        all_entries: Optional[List[Entry]] = None,
    ) -> None:
        """Embed a saved note and link it to similar notes. Never raises."""
        try:
            if entry is None:
                entry = self.storage.get_entry(user_id, entry_id)
                if entry is None:
                    logger.warning("Post-processing skipped, entry %s no longer exists", entry_id)
                    return
            vector = self.embeddings.embed_entry(entry)
            candidates = all_entries if all_entries is not None else self.storage.list_entries(user_id)
            self.embeddings.detect_and_persist_relations(entry_id, vector, candidates, user_id)
        except Exception:
            logger.exception("Post-processing failed for entry %s", entry_id)

    def refine_book_context(self, user_id: str, book_id: str, summary: str) -> None:
        """Fold a new note summary into its notebook's description. Never raises."""
        try:
            book = self.storage.get_book(user_id, book_id)
            if book is None or not summary:
                return
            context = self.book_context.refine(book.name, book.context, summary)
            if context and context != book.context:
                self.storage.update_book_context(user_id, book_id, context)
        except Exception:
            logger.exception("Context refinement failed for book %s", book_id)

    def schedule_post_process(
        self,
        entry_id: str,
        entry: Optional[Entry],
        user_id: str,
        all_entries: Optional[List[Entry]] = None,
    ) -> Optional[Future]:
        return self._submit(self.post_process, entry_id, entry, user_id, all_entries)

    def schedule_book_context(self, user_id: str, book_id: str, summary: str) -> Optional[Future]:
        return self._submit(self.refine_book_context, user_id, book_id, summary)

    def shutdown(self, wait: bool = True) -> None:
        if not self._owns_executor:
            return
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)

    def _submit(self, fn, *args) -> Optional[Future]:
        if not self.run_in_background:
            fn(*args)
            return None
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=Config.POST_PROCESS_WORKERS,
                    thread_name_prefix="bitacora-post",
                )
            executor = self._executor
        return executor.submit(fn, *args)
